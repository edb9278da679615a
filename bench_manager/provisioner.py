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

"""Network, IAM, and registry provisioning in dependency order."""

from __future__ import annotations

import json

from botocore.exceptions import ClientError, WaiterError
from rich.panel import Panel

from bench_manager import console, logger
from bench_manager.aws import AwsClients, error_code, resource_tags, tag_spec
from bench_manager.config import BenchConfig
from bench_manager.constants import (
    CLUSTER_ROLE_POLICIES,
    CLUSTER_ROLE_SERVICE,
    DEFAULT_ROUTE_CIDR,
    NODE_ROLE_POLICIES,
    NODE_ROLE_SERVICE,
    SUBNET_CIDRS,
    TAG_USE_KEY,
    TAG_USE_VALUE,
    VPC_CIDR,
)
from bench_manager.context import RunContext, RunPhase
from bench_manager.errors import ProvisioningError
from bench_manager.registry import ResourceKind


def _trust_policy(service: str) -> str:
    return json.dumps({
        "Version": "2012-10-17",
        "Statement": [{
            "Effect": "Allow",
            "Principal": {"Service": service},
            "Action": "sts:AssumeRole",
        }],
    })


# ============================================================================
# Network
# ============================================================================

def create_network(ctx: RunContext, clients: AwsClients) -> str:
    """Create the VPC with DNS hostnames enabled.

    Returns:
        The VPC id.
    """
    ec2 = clients.ec2
    vpc_id = ec2.create_vpc(
        CidrBlock=VPC_CIDR, TagSpecifications=tag_spec("vpc", ctx.cluster_name, "vpc"),
    )["Vpc"]["VpcId"]
    ctx.registry.register(ResourceKind.NETWORK, vpc_id)
    ec2.modify_vpc_attribute(VpcId=vpc_id, EnableDnsHostnames={"Value": True})
    ec2.get_waiter("vpc_available").wait(VpcIds=[vpc_id])
    console.print(f"[green]  \u2713 VPC {vpc_id}[/green]")
    return vpc_id


def create_gateway(ctx: RunContext, clients: AwsClients, vpc_id: str) -> str:
    """Create an internet gateway and attach it to ``vpc_id``.

    Returns:
        The gateway id.
    """
    ec2 = clients.ec2
    igw_id = ec2.create_internet_gateway(
        TagSpecifications=tag_spec("internet-gateway", ctx.cluster_name, "igw"),
    )["InternetGateway"]["InternetGatewayId"]
    ctx.registry.register(ResourceKind.GATEWAY, igw_id, vpc_id=vpc_id)
    ec2.attach_internet_gateway(InternetGatewayId=igw_id, VpcId=vpc_id)
    console.print(f"[green]  \u2713 Internet gateway {igw_id}[/green]")
    return igw_id


def _availability_zones(clients: AwsClients, count: int) -> list[str]:
    zones = clients.ec2.describe_availability_zones(
        Filters=[{"Name": "state", "Values": ["available"]}],
    )["AvailabilityZones"]
    names = sorted(z["ZoneName"] for z in zones)
    if len(names) < count:
        raise ProvisioningError(f"Region {clients.region} has only {len(names)} available zones; {count} needed")
    return names[:count]


def create_subnets(ctx: RunContext, clients: AwsClients, vpc_id: str) -> list[str]:
    """Create one public subnet per CIDR, each in a distinct availability zone.

    Returns:
        Subnet ids in creation order.
    """
    ec2 = clients.ec2
    zones = _availability_zones(clients, len(SUBNET_CIDRS))
    subnet_ids = []
    for index, (cidr, zone) in enumerate(zip(SUBNET_CIDRS, zones), start=1):
        subnet_id = ec2.create_subnet(
            VpcId=vpc_id,
            CidrBlock=cidr,
            AvailabilityZone=zone,
            TagSpecifications=tag_spec("subnet", ctx.cluster_name, f"subnet-{index}"),
        )["Subnet"]["SubnetId"]
        ctx.registry.register(ResourceKind.SUBNET, subnet_id, zone=zone)
        ec2.modify_subnet_attribute(SubnetId=subnet_id, MapPublicIpOnLaunch={"Value": True})
        subnet_ids.append(subnet_id)
        console.print(f"[green]  \u2713 Subnet {subnet_id} ({zone}, {cidr})[/green]")
    return subnet_ids


def create_route_table(ctx: RunContext, clients: AwsClients, vpc_id: str, igw_id: str,
                       subnet_ids: list[str]) -> str:
    """Create a route table with a default route via the gateway, associated to every subnet.

    Returns:
        The route table id.
    """
    ec2 = clients.ec2
    rt_id = ec2.create_route_table(
        VpcId=vpc_id, TagSpecifications=tag_spec("route-table", ctx.cluster_name, "rt"),
    )["RouteTable"]["RouteTableId"]
    ctx.registry.register(ResourceKind.ROUTE_TABLE, rt_id)
    ec2.create_route(RouteTableId=rt_id, DestinationCidrBlock=DEFAULT_ROUTE_CIDR, GatewayId=igw_id)
    for subnet_id in subnet_ids:
        ec2.associate_route_table(RouteTableId=rt_id, SubnetId=subnet_id)
    console.print(f"[green]  \u2713 Route table {rt_id}[/green]")
    return rt_id


# ============================================================================
# Identity
# ============================================================================

def create_role(ctx: RunContext, clients: AwsClients, name: str, service: str,
                policies: tuple[str, ...]) -> str:
    """Create an IAM role assumable by ``service`` and attach ``policies``.

    Attached policy ARNs are recorded on the handle as they succeed, so
    teardown detaches exactly what was attached.

    Returns:
        The role ARN.
    """
    iam = clients.iam
    role = iam.create_role(
        RoleName=name,
        AssumeRolePolicyDocument=_trust_policy(service),
        Tags=resource_tags(ctx.cluster_name, name.removeprefix(f"{ctx.cluster_name}-")),
    )["Role"]
    handle = ctx.registry.register(ResourceKind.IAM_ROLE, name, arn=role["Arn"], policies=[])
    iam.get_waiter("role_exists").wait(RoleName=name)
    for policy_arn in policies:
        iam.attach_role_policy(RoleName=name, PolicyArn=policy_arn)
        handle.attributes["policies"].append(policy_arn)
        ctx.save()
    console.print(f"[green]  \u2713 IAM role {name}[/green]")
    return role["Arn"]


# ============================================================================
# Registry
# ============================================================================

def ensure_repository(ctx: RunContext, clients: AwsClients, name: str) -> str:
    """Reuse the ECR repository ``name`` if it exists, else create it.

    A reused repository is registered with ``owned=False`` and is never deleted.

    Returns:
        The repository URI.
    """
    ecr = clients.ecr
    try:
        repo = ecr.describe_repositories(repositoryNames=[name])["repositories"][0]
        ctx.registry.register(ResourceKind.REGISTRY_REPO, name, owned=False, uri=repo["repositoryUri"])
        console.print(f"[yellow]\u2139\ufe0f  Reusing existing ECR repository {name}[/yellow]")
        return repo["repositoryUri"]
    except ClientError as err:
        if error_code(err) != "RepositoryNotFoundException":
            raise
    repo = ecr.create_repository(
        repositoryName=name,
        tags=[{"Key": TAG_USE_KEY, "Value": TAG_USE_VALUE}],
    )["repository"]
    ctx.registry.register(ResourceKind.REGISTRY_REPO, name, uri=repo["repositoryUri"])
    console.print(f"[green]  \u2713 ECR repository {name}[/green]")
    return repo["repositoryUri"]


# ============================================================================
# Public API
# ============================================================================

def provision(ctx: RunContext, clients: AwsClients, config: BenchConfig) -> None:
    """Create network, identity, and registry resources.

    Every resource is registered as soon as its create call returns.

    Raises:
        ProvisioningError: If any create call or waiter fails.
    """
    console.print(Panel.fit("Provisioning network, IAM, and registry", style="bold blue"))
    try:
        vpc_id = create_network(ctx, clients)
        igw_id = create_gateway(ctx, clients, vpc_id)
        subnet_ids = create_subnets(ctx, clients, vpc_id)
        create_route_table(ctx, clients, vpc_id, igw_id, subnet_ids)
        create_role(ctx, clients, f"{ctx.cluster_name}-cluster-role", CLUSTER_ROLE_SERVICE, CLUSTER_ROLE_POLICIES)
        create_role(ctx, clients, f"{ctx.cluster_name}-node-role", NODE_ROLE_SERVICE, NODE_ROLE_POLICIES)
        ensure_repository(ctx, clients, config.ecr_repo_name)
    except (ClientError, WaiterError) as err:
        logger.error("provisioning failed: %s", err)
        raise ProvisioningError(f"Provisioning failed: {err}") from err
    ctx.advance(RunPhase.PROVISIONED)
    console.print("[green]\u2705 Infrastructure provisioned[/green]")
