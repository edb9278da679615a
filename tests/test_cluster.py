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

"""Tests for the cluster builder."""

import stat
from unittest.mock import patch

import pytest
import yaml

from bench_manager.cluster import (
    build_cluster,
    count_ready_nodes,
    create_control_plane,
    create_node_pool,
    wait_for_ready_nodes,
    write_kubeconfig,
)
from bench_manager.constants import CLUSTER_POLL_MAX_ATTEMPTS
from bench_manager.context import RunPhase
from bench_manager.errors import PollTimeoutError, ProvisioningError
from bench_manager.registry import HandleState, ResourceKind

from conftest import client_error


def _cluster(status):
    return {"cluster": {
        "status": status,
        "arn": "arn:aws:eks:us-east-1:123456789012:cluster/bench-test",
        "endpoint": "https://ABC.gr7.us-east-1.eks.amazonaws.com",
        "certificateAuthority": {"data": "Q0EtREFUQQ=="},
    }}


def _nodes(*ready):
    return {"items": [
        {"status": {"conditions": [{"type": "Ready", "status": "True" if r else "False"}]}} for r in ready
    ]}


@pytest.fixture
def provisioned(ctx):
    reg = ctx.registry
    reg.register(ResourceKind.SUBNET, "subnet-1")
    reg.register(ResourceKind.SUBNET, "subnet-2")
    reg.register(ResourceKind.IAM_ROLE, "bench-test-cluster-role", arn="arn:cluster-role", policies=[])
    reg.register(ResourceKind.IAM_ROLE, "bench-test-node-role", arn="arn:node-role", policies=[])
    return ctx


class TestControlPlane:

    def test_waits_until_active(self, provisioned, clients):
        clients.eks.describe_cluster.side_effect = [_cluster("CREATING"), _cluster("CREATING"), _cluster("ACTIVE")]
        create_control_plane(provisioned, clients)
        kwargs = clients.eks.create_cluster.call_args.kwargs
        assert kwargs["roleArn"] == "arn:cluster-role"
        assert kwargs["resourcesVpcConfig"]["subnetIds"] == ["subnet-1", "subnet-2"]
        handle = provisioned.registry.find(ResourceKind.CLUSTER, "bench-test")
        assert handle.state is HandleState.ACTIVE

    def test_failed_status_is_fatal_and_handle_kept(self, provisioned, clients):
        clients.eks.describe_cluster.side_effect = [_cluster("CREATING"), _cluster("FAILED")]
        with pytest.raises(ProvisioningError, match="FAILED"):
            create_control_plane(provisioned, clients)
        handle = provisioned.registry.find(ResourceKind.CLUSTER, "bench-test")
        assert handle.state is HandleState.CREATING
        assert handle.live

    def test_ceiling_exceeded(self, provisioned, clients):
        clients.eks.describe_cluster.return_value = _cluster("CREATING")
        with pytest.raises(PollTimeoutError):
            create_control_plane(provisioned, clients)
        assert clients.eks.describe_cluster.call_count == CLUSTER_POLL_MAX_ATTEMPTS

    def test_create_error_registers_nothing(self, provisioned, clients):
        clients.eks.create_cluster.side_effect = client_error("UnsupportedAvailabilityZoneException")
        with pytest.raises(ProvisioningError):
            create_control_plane(provisioned, clients)
        assert provisioned.registry.of_kind(ResourceKind.CLUSTER) == []

    def test_missing_role_is_fatal(self, ctx, clients):
        with pytest.raises(ProvisioningError, match="cluster-role"):
            create_control_plane(ctx, clients)
        clients.eks.create_cluster.assert_not_called()


class TestKubeconfig:

    def test_written_with_exec_credentials(self, ctx, clients, tmp_path):
        clients.eks.describe_cluster.return_value = _cluster("ACTIVE")
        path = write_kubeconfig(ctx, clients, tmp_path)
        assert path == tmp_path / "bench-test.kubeconfig"
        assert ctx.kubeconfig == path
        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        doc = yaml.safe_load(path.read_text())
        assert doc["clusters"][0]["cluster"]["server"] == "https://ABC.gr7.us-east-1.eks.amazonaws.com"
        exec_cfg = doc["users"][0]["user"]["exec"]
        assert exec_cfg["command"] == "aws"
        assert exec_cfg["args"] == [
            "--region", "us-east-1", "eks", "get-token", "--cluster-name", "bench-test", "--profile", "bench",
        ]
        assert doc["current-context"] == doc["contexts"][0]["name"]


class TestNodePool:

    def test_fixed_size_and_active(self, provisioned, clients, config):
        clients.eks.describe_nodegroup.side_effect = [
            {"nodegroup": {"status": "CREATING"}},
            {"nodegroup": {"status": "ACTIVE"}},
        ]
        create_node_pool(provisioned, clients, config)
        kwargs = clients.eks.create_nodegroup.call_args.kwargs
        assert kwargs["scalingConfig"] == {"minSize": 2, "maxSize": 2, "desiredSize": 2}
        assert kwargs["nodeRole"] == "arn:node-role"
        handle = provisioned.registry.find(ResourceKind.NODE_POOL, "bench-test-nodegroup")
        assert handle.state is HandleState.ACTIVE
        assert handle.attributes["cluster"] == "bench-test"

    def test_create_failed_reports_health_issues(self, provisioned, clients, config):
        clients.eks.describe_nodegroup.return_value = {"nodegroup": {
            "status": "CREATE_FAILED",
            "health": {"issues": [{"code": "Ec2SubnetInvalidConfiguration", "message": "no public IP"}]},
        }}
        with pytest.raises(ProvisioningError, match="Ec2SubnetInvalidConfiguration"):
            create_node_pool(provisioned, clients, config)


class TestReadyNodes:

    def test_count_ready_nodes(self):
        with patch("bench_manager.cluster.kubectl_json", return_value=_nodes(True, False, True)):
            assert count_ready_nodes(None) == 2

    def test_unreachable_api_counts_zero(self):
        with patch("bench_manager.cluster.kubectl_json", return_value=None):
            assert count_ready_nodes(None) == 0

    def test_waits_for_expected_count(self, ctx):
        answers = [None, _nodes(True), _nodes(True, True)]
        with patch("bench_manager.cluster.kubectl_json", side_effect=answers) as mock_kubectl:
            assert wait_for_ready_nodes(ctx, 2) == 2
        assert mock_kubectl.call_count == 3


class TestBuildCluster:

    def test_reaches_cluster_ready(self, provisioned, clients, config):
        clients.eks.describe_cluster.return_value = _cluster("ACTIVE")
        clients.eks.describe_nodegroup.return_value = {"nodegroup": {"status": "ACTIVE"}}
        with patch("bench_manager.cluster.kubectl_json", return_value=_nodes(True, True)):
            build_cluster(provisioned, clients, config)
        assert provisioned.phase is RunPhase.CLUSTER_READY
        assert provisioned.kubeconfig.exists()
        kinds = [h.kind for h in provisioned.registry.all()]
        assert kinds[-2:] == [ResourceKind.CLUSTER, ResourceKind.NODE_POOL]

    def test_describe_error_becomes_provisioning_error(self, provisioned, clients, config):
        clients.eks.describe_cluster.side_effect = client_error("ServiceUnavailableException")
        with pytest.raises(ProvisioningError, match="ServiceUnavailableException"):
            build_cluster(provisioned, clients, config)
