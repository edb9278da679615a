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

"""EKS cluster and node pool lifecycle, kubeconfig, and node readiness."""

from __future__ import annotations

from pathlib import Path

import yaml
from botocore.exceptions import ClientError
from rich.panel import Panel

from bench_manager import console, logger
from bench_manager.aws import AwsClients
from bench_manager.config import BenchConfig
from bench_manager.constants import (
    CLUSTER_POLL_INTERVAL_SECONDS,
    CLUSTER_POLL_MAX_ATTEMPTS,
    KUBECONFIG_TEMPLATE,
    NODEGROUP_POLL_INTERVAL_SECONDS,
    NODEGROUP_POLL_MAX_ATTEMPTS,
    NODES_READY_POLL_INTERVAL_SECONDS,
    NODES_READY_POLL_MAX_ATTEMPTS,
    TAG_USE_KEY,
    TAG_USE_VALUE,
)
from bench_manager.context import RunContext, RunPhase
from bench_manager.errors import ProvisioningError
from bench_manager.polling import poll
from bench_manager.registry import HandleState, ResourceKind
from bench_manager.utils import kubectl_json


def _role_arn(ctx: RunContext, role_name: str) -> str:
    handle = ctx.registry.find(ResourceKind.IAM_ROLE, role_name)
    if handle is None or not handle.live:
        raise ProvisioningError(f"IAM role {role_name} is not available")
    return handle.attributes["arn"]


def nodegroup_name(cluster_name: str) -> str:
    return f"{cluster_name}-nodegroup"


# ============================================================================
# Control plane
# ============================================================================

def create_control_plane(ctx: RunContext, clients: AwsClients) -> None:
    """Create the EKS cluster and wait for it to become ACTIVE.

    Raises:
        ProvisioningError: If the create call fails, the cluster reports
            FAILED, or it is not ACTIVE within the poll ceiling.
    """
    eks = clients.eks
    name = ctx.cluster_name
    try:
        eks.create_cluster(
            name=name,
            roleArn=_role_arn(ctx, f"{name}-cluster-role"),
            resourcesVpcConfig={
                "subnetIds": ctx.identifiers(ResourceKind.SUBNET),
                "endpointPublicAccess": True,
                "endpointPrivateAccess": False,
            },
            tags={TAG_USE_KEY: TAG_USE_VALUE},
        )
    except ClientError as err:
        raise ProvisioningError(f"EKS cluster creation failed: {err}") from err
    handle = ctx.registry.register(ResourceKind.CLUSTER, name, state=HandleState.CREATING)
    console.print(f"[yellow]\u2139\ufe0f  Waiting for cluster {name} to become ACTIVE (up to 15 minutes)...[/yellow]")

    def _status() -> str | None:
        cluster = eks.describe_cluster(name=name)["cluster"]
        status = cluster["status"]
        if status == "FAILED":
            raise ProvisioningError(f"EKS cluster {name} entered FAILED state")
        return status if status == "ACTIVE" else None

    poll(
        _status,
        interval=CLUSTER_POLL_INTERVAL_SECONDS,
        max_attempts=CLUSTER_POLL_MAX_ATTEMPTS,
        description=f"cluster {name} to become ACTIVE",
        progress_every=4,
        on_progress=lambda n: console.print(f"[dim]  cluster still creating ({n}/{CLUSTER_POLL_MAX_ATTEMPTS})[/dim]"),
    )
    ctx.registry.mark_active(handle)
    console.print(f"[green]  \u2713 Cluster {name} is ACTIVE[/green]")


def write_kubeconfig(ctx: RunContext, clients: AwsClients, directory: Path) -> Path:
    """Write a kubeconfig that authenticates through ``aws eks get-token``.

    Returns:
        Path of the written kubeconfig.
    """
    cluster = clients.eks.describe_cluster(name=ctx.cluster_name)["cluster"]
    arn = cluster["arn"]
    args = ["--region", clients.region, "eks", "get-token", "--cluster-name", ctx.cluster_name]
    if ctx.profile:
        args += ["--profile", ctx.profile]
    kubeconfig = {
        "apiVersion": "v1",
        "kind": "Config",
        "clusters": [{
            "name": arn,
            "cluster": {
                "server": cluster["endpoint"],
                "certificate-authority-data": cluster["certificateAuthority"]["data"],
            },
        }],
        "users": [{
            "name": arn,
            "user": {"exec": {
                "apiVersion": "client.authentication.k8s.io/v1beta1",
                "command": "aws",
                "args": args,
            }},
        }],
        "contexts": [{"name": arn, "context": {"cluster": arn, "user": arn}}],
        "current-context": arn,
    }
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / KUBECONFIG_TEMPLATE.format(cluster=ctx.cluster_name)
    with open(path, "w") as fh:
        yaml.safe_dump(kubeconfig, fh, default_flow_style=False)
    path.chmod(0o600)
    ctx.kubeconfig = path
    ctx.save()
    console.print(f"[green]  \u2713 Kubeconfig written to {path}[/green]")
    return path


# ============================================================================
# Node pool
# ============================================================================

def create_node_pool(ctx: RunContext, clients: AwsClients, config: BenchConfig) -> None:
    """Create a fixed-size node pool and wait for it to become ACTIVE.

    Raises:
        ProvisioningError: If the create call fails, the pool reports
            CREATE_FAILED, or it is not ACTIVE within the poll ceiling.
    """
    eks = clients.eks
    name = nodegroup_name(ctx.cluster_name)
    try:
        eks.create_nodegroup(
            clusterName=ctx.cluster_name,
            nodegroupName=name,
            scalingConfig={
                "minSize": config.node_count,
                "maxSize": config.node_count,
                "desiredSize": config.node_count,
            },
            subnets=ctx.identifiers(ResourceKind.SUBNET),
            instanceTypes=[config.node_type],
            nodeRole=_role_arn(ctx, f"{ctx.cluster_name}-node-role"),
            tags={TAG_USE_KEY: TAG_USE_VALUE},
        )
    except ClientError as err:
        raise ProvisioningError(f"Node group creation failed: {err}") from err
    handle = ctx.registry.register(
        ResourceKind.NODE_POOL, name, state=HandleState.CREATING, cluster=ctx.cluster_name,
    )
    console.print(f"[yellow]\u2139\ufe0f  Waiting for node group {name} ({config.node_count} x {config.node_type})...[/yellow]")

    def _status() -> str | None:
        group = eks.describe_nodegroup(clusterName=ctx.cluster_name, nodegroupName=name)["nodegroup"]
        status = group["status"]
        if status in ("CREATE_FAILED", "DEGRADED"):
            issues = group.get("health", {}).get("issues", [])
            detail = "; ".join(f"{i.get('code')}: {i.get('message')}" for i in issues) or "no health issues reported"
            raise ProvisioningError(f"Node group {name} entered {status}: {detail}")
        return status if status == "ACTIVE" else None

    poll(
        _status,
        interval=NODEGROUP_POLL_INTERVAL_SECONDS,
        max_attempts=NODEGROUP_POLL_MAX_ATTEMPTS,
        description=f"node group {name} to become ACTIVE",
    )
    ctx.registry.mark_active(handle)
    console.print(f"[green]  \u2713 Node group {name} is ACTIVE[/green]")


def count_ready_nodes(kubeconfig: Path | None) -> int:
    """Number of nodes whose Ready condition is True, or 0 if the API is unreachable."""
    nodes = kubectl_json(["get", "nodes"], kubeconfig=kubeconfig)
    if nodes is None:
        return 0
    ready = 0
    for node in nodes.get("items", []):
        for cond in node.get("status", {}).get("conditions", []):
            if cond.get("type") == "Ready" and cond.get("status") == "True":
                ready += 1
                break
    return ready


def wait_for_ready_nodes(ctx: RunContext, expected: int) -> int:
    """Poll the workload API until at least ``expected`` nodes are Ready.

    Returns:
        The observed ready-node count.
    """

    def _ready() -> int | None:
        count = count_ready_nodes(ctx.kubeconfig)
        logger.debug("%d/%d nodes ready", count, expected)
        return count if count >= expected else None

    count = poll(
        _ready,
        interval=NODES_READY_POLL_INTERVAL_SECONDS,
        max_attempts=NODES_READY_POLL_MAX_ATTEMPTS,
        description=f"{expected} ready nodes",
    )
    console.print(f"[green]  \u2713 {count}/{expected} nodes Ready[/green]")
    return count


# ============================================================================
# Public API
# ============================================================================

def build_cluster(ctx: RunContext, clients: AwsClients, config: BenchConfig) -> None:
    """Create the cluster and node pool and wait until the nodes are Ready."""
    console.print(Panel.fit(f"Creating EKS cluster {ctx.cluster_name}", style="bold blue"))
    try:
        create_control_plane(ctx, clients)
        write_kubeconfig(ctx, clients, config.resolved_logs_dir)
        create_node_pool(ctx, clients, config)
    except ClientError as err:
        raise ProvisioningError(f"Cluster creation failed: {err}") from err
    wait_for_ready_nodes(ctx, config.node_count)
    ctx.advance(RunPhase.CLUSTER_READY)
    console.print("[green]\u2705 Cluster ready[/green]")
