# /*
# Copyright 2026 The Grove Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Tests for network, IAM, and registry provisioning."""

import pytest
from botocore.exceptions import ClientError

from bench_manager.context import RunPhase
from bench_manager.errors import ProvisioningError
from bench_manager.provisioner import create_role, ensure_repository, provision
from bench_manager.registry import ResourceKind

from conftest import client_error


@pytest.fixture
def cloud(clients):
    """Fake clients answering every create call of a successful provisioning."""
    ec2 = clients.ec2
    ec2.create_vpc.return_value = {"Vpc": {"VpcId": "vpc-1"}}
    ec2.create_internet_gateway.return_value = {"InternetGateway": {"InternetGatewayId": "igw-1"}}
    ec2.describe_availability_zones.return_value = {"AvailabilityZones": [
        {"ZoneName": "us-east-1c"}, {"ZoneName": "us-east-1a"}, {"ZoneName": "us-east-1b"},
    ]}
    ec2.create_subnet.side_effect = [
        {"Subnet": {"SubnetId": "subnet-1"}},
        {"Subnet": {"SubnetId": "subnet-2"}},
    ]
    ec2.create_route_table.return_value = {"RouteTable": {"RouteTableId": "rtb-1"}}
    clients.iam.create_role.side_effect = [
        {"Role": {"Arn": "arn:aws:iam::123456789012:role/bench-test-cluster-role"}},
        {"Role": {"Arn": "arn:aws:iam::123456789012:role/bench-test-node-role"}},
    ]
    clients.ecr.describe_repositories.side_effect = client_error("RepositoryNotFoundException")
    clients.ecr.create_repository.return_value = {
        "repository": {"repositoryUri": "123456789012.dkr.ecr.us-east-1.amazonaws.com/caged-benchmark"},
    }
    return clients


class TestProvision:

    def test_creates_everything_in_dependency_order(self, ctx, cloud, config):
        provision(ctx, cloud, config)
        assert [(h.kind, h.identifier) for h in ctx.registry.all()] == [
            (ResourceKind.NETWORK, "vpc-1"),
            (ResourceKind.GATEWAY, "igw-1"),
            (ResourceKind.SUBNET, "subnet-1"),
            (ResourceKind.SUBNET, "subnet-2"),
            (ResourceKind.ROUTE_TABLE, "rtb-1"),
            (ResourceKind.IAM_ROLE, "bench-test-cluster-role"),
            (ResourceKind.IAM_ROLE, "bench-test-node-role"),
            (ResourceKind.REGISTRY_REPO, "caged-benchmark"),
        ]
        assert all(h.owned for h in ctx.registry.all())
        assert ctx.phase is RunPhase.PROVISIONED

    def test_network_details(self, ctx, cloud, config):
        provision(ctx, cloud, config)
        ec2 = cloud.ec2
        ec2.modify_vpc_attribute.assert_called_once_with(VpcId="vpc-1", EnableDnsHostnames={"Value": True})
        ec2.attach_internet_gateway.assert_called_once_with(InternetGatewayId="igw-1", VpcId="vpc-1")
        zones = [c.kwargs["AvailabilityZone"] for c in ec2.create_subnet.call_args_list]
        assert zones == ["us-east-1a", "us-east-1b"]
        assert ec2.modify_subnet_attribute.call_count == 2
        ec2.create_route.assert_called_once_with(
            RouteTableId="rtb-1", DestinationCidrBlock="0.0.0.0/0", GatewayId="igw-1",
        )
        assert [c.kwargs["SubnetId"] for c in ec2.associate_route_table.call_args_list] == ["subnet-1", "subnet-2"]

    def test_resources_are_tagged(self, ctx, cloud, config):
        provision(ctx, cloud, config)
        tags = cloud.ec2.create_vpc.call_args.kwargs["TagSpecifications"][0]["Tags"]
        assert {"Key": "Name", "Value": "bench-test-vpc"} in tags
        assert {"Key": "Use", "Value": "CagedBenchmark"} in tags

    def test_role_policies_recorded(self, ctx, cloud, config):
        provision(ctx, cloud, config)
        node_role = ctx.registry.find(ResourceKind.IAM_ROLE, "bench-test-node-role")
        assert len(node_role.attributes["policies"]) == 3
        assert node_role.attributes["arn"].endswith("role/bench-test-node-role")
        assert cloud.iam.attach_role_policy.call_count == 4

    def test_create_failure_stops_and_keeps_earlier_handles(self, ctx, cloud, config):
        cloud.ec2.create_subnet.side_effect = client_error("InvalidParameterValue", "CreateSubnet")
        with pytest.raises(ProvisioningError, match="InvalidParameterValue"):
            provision(ctx, cloud, config)
        assert [h.kind for h in ctx.registry.all()] == [ResourceKind.NETWORK, ResourceKind.GATEWAY]
        cloud.iam.create_role.assert_not_called()
        assert ctx.phase is RunPhase.CREATED

    def test_too_few_zones(self, ctx, cloud, config):
        cloud.ec2.describe_availability_zones.return_value = {"AvailabilityZones": [{"ZoneName": "us-east-1a"}]}
        with pytest.raises(ProvisioningError, match="available zones"):
            provision(ctx, cloud, config)


class TestRole:

    def test_partial_attach_records_only_attached(self, ctx, clients):
        clients.iam.create_role.return_value = {"Role": {"Arn": "arn:role"}}
        clients.iam.attach_role_policy.side_effect = [None, client_error("LimitExceeded")]
        with pytest.raises(ClientError):
            create_role(ctx, clients, "bench-test-node-role", "ec2.amazonaws.com", ("arn:p1", "arn:p2"))
        handle = ctx.registry.find(ResourceKind.IAM_ROLE, "bench-test-node-role")
        assert handle.attributes["policies"] == ["arn:p1"]


class TestRepository:

    def test_existing_repository_is_reused_not_owned(self, ctx, clients):
        clients.ecr.describe_repositories.return_value = {
            "repositories": [{"repositoryUri": "123.dkr.ecr.us-east-1.amazonaws.com/caged-benchmark"}],
        }
        uri = ensure_repository(ctx, clients, "caged-benchmark")
        assert uri.endswith("/caged-benchmark")
        handle = ctx.registry.find(ResourceKind.REGISTRY_REPO, "caged-benchmark")
        assert handle.owned is False
        clients.ecr.create_repository.assert_not_called()

    def test_describe_error_other_than_not_found_propagates(self, ctx, clients):
        clients.ecr.describe_repositories.side_effect = client_error("AccessDeniedException")
        with pytest.raises(ClientError, match="AccessDeniedException"):
            ensure_repository(ctx, clients, "caged-benchmark")
        assert len(ctx.registry) == 0
