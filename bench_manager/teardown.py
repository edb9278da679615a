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

"""Reverse-order, best-effort deletion of everything a run registered.

Every step only touches live handles that this run created or found inside
its own network, so running the manager a second time on the same context issues no further delete calls. Each delete is
wrapped individually: a failure is logged and the sequence continues.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable

from botocore.exceptions import ClientError
from rich.panel import Panel
from tenacity import RetryCallState, Retrying, retry_if_exception, stop_after_attempt, wait_fixed

from bench_manager import console, logger
from bench_manager.aws import AwsClients, error_code, is_absent_error, is_dependency_error
from bench_manager.constants import (
    LB_SETTLE_SECONDS,
    NETWORK_DELETE_ATTEMPTS,
    NETWORK_DELETE_WAIT_SECONDS,
    SECURITY_GROUP_DELETE_ATTEMPTS,
    SECURITY_GROUP_DELETE_WAIT_SECONDS,
    WAITER_DELETE,
)
from bench_manager.context import RunContext
from bench_manager.registry import Handle, HandleState, ResourceKind


@dataclass
class TeardownReport:
    """Outcome of one teardown pass.

    Attributes:
        deleted: ``kind:identifier`` of every resource confirmed gone.
        failures: ``step: error`` of every swallowed failure.
    """

    deleted: list[str] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.failures


class TeardownManager:
    """Deletes a run's resources in reverse dependency order. Never raises.

    Args:
        ctx: Run context whose registry lists the handles.
        clients: AWS clients.
        settle_seconds: Pause after deleting load balancers.
    """

    def __init__(self, ctx: RunContext, clients: AwsClients, settle_seconds: float = LB_SETTLE_SECONDS) -> None:
        self.ctx = ctx
        self.registry = ctx.registry
        self.clients = clients
        self.settle_seconds = settle_seconds
        self.report = TeardownReport()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _deletable(handle: Handle) -> bool:
        return handle.live and (handle.owned or bool(handle.attributes.get("discovered")))

    def _targets(self, kind: ResourceKind) -> list[Handle]:
        """Deletable handles of ``kind``, most recent first."""
        return [h for h in reversed(self.registry.of_kind(kind)) if self._deletable(h)]

    def _discover(self, kind: ResourceKind, identifier: str, **attributes) -> Handle:
        """Register a resource found in the run's network as discovered rather than owned."""
        return self.registry.register(kind, identifier, owned=False, discovered=True, **attributes)

    def _network(self) -> Handle | None:
        targets = self._targets(ResourceKind.NETWORK)
        return targets[0] if targets else None

    def _failed(self, step: str, err: BaseException) -> None:
        code = error_code(err) or type(err).__name__
        logger.warning("teardown step failed: %s: %s", step, code)
        console.print(f"[yellow]\u26a0\ufe0f  {step} failed: {err}[/yellow]")
        self.report.failures.append(f"{step}: {code}")

    def _retrying(self, attempts: int, wait: float, step: str) -> Retrying:
        def _log(state: RetryCallState) -> None:
            console.print(f"[yellow]  {step} still in use, retrying ({state.attempt_number}/{attempts})...[/yellow]")

        return Retrying(
            stop=stop_after_attempt(attempts),
            wait=wait_fixed(wait),
            retry=retry_if_exception(is_dependency_error),
            before_sleep=_log,
            reraise=True,
        )

    def _delete(self, handle: Handle, action: Callable[[], None], step: str) -> bool:
        """Run ``action`` for ``handle`` and record the outcome on the handle.

        Returns:
            True if the resource is gone afterwards.
        """
        if not self._deletable(handle):
            return False
        if handle.state is HandleState.REQUESTED:
            self.registry.mark_absent(handle)
            return False
        self.registry.mark_deleting(handle)
        try:
            action()
        except ClientError as err:
            if is_absent_error(err):
                self.registry.forget(handle)
                self.report.deleted.append(f"{handle.kind.value}:{handle.identifier}")
                return True
            self.registry.mark_active(handle)
            self._failed(step, err)
            return False
        except Exception as err:
            self.registry.mark_active(handle)
            self._failed(step, err)
            return False
        self.registry.mark_absent(handle)
        self.report.deleted.append(f"{handle.kind.value}:{handle.identifier}")
        console.print(f"[green]  \u2713 Deleted {handle.kind.value} {handle.identifier}[/green]")
        return True

    def _query(self, step: str, call: Callable[[], list]) -> list:
        try:
            return call()
        except ClientError as err:
            self._failed(step, err)
            return []

    # ------------------------------------------------------------------
    # Steps, in execution order
    # ------------------------------------------------------------------

    def terminate_instances(self) -> None:
        ec2 = self.clients.ec2
        for handle in self._targets(ResourceKind.COMPUTE_INSTANCE):
            console.print(f"[yellow]\u2139\ufe0f  Terminating instance {handle.identifier}...[/yellow]")

            def _terminate(instance_id: str = handle.identifier) -> None:
                ec2.terminate_instances(InstanceIds=[instance_id])
                ec2.get_waiter("instance_terminated").wait(InstanceIds=[instance_id], WaiterConfig=WAITER_DELETE)

            self._delete(handle, _terminate, f"terminate instance {handle.identifier}")

    def delete_load_balancers(self) -> None:
        network = self._network()
        if network is None:
            return
        elbv2 = self.clients.elbv2
        found = self._query(
            "describe load balancers",
            lambda: elbv2.describe_load_balancers().get("LoadBalancers", []),
        )
        for lb in found:
            if lb.get("VpcId") != network.identifier:
                continue
            self._discover(ResourceKind.LOAD_BALANCER, lb["LoadBalancerArn"], name=lb.get("LoadBalancerName"))
        deleted = 0
        for handle in self._targets(ResourceKind.LOAD_BALANCER):
            if self._delete(
                handle,
                lambda arn=handle.identifier: elbv2.delete_load_balancer(LoadBalancerArn=arn),
                f"delete load balancer {handle.attributes.get('name') or handle.identifier}",
            ):
                deleted += 1
        if deleted:
            console.print(f"[yellow]\u2139\ufe0f  Waiting {self.settle_seconds}s for load balancer interfaces to be released...[/yellow]")
            time.sleep(self.settle_seconds)

    def delete_security_groups(self) -> None:
        ec2 = self.clients.ec2
        for handle in self._targets(ResourceKind.SECURITY_GROUP):
            step = f"delete security group {handle.identifier}"
            retrying = self._retrying(SECURITY_GROUP_DELETE_ATTEMPTS, SECURITY_GROUP_DELETE_WAIT_SECONDS, step)
            self._delete(
                handle,
                lambda gid=handle.identifier: retrying(ec2.delete_security_group, GroupId=gid),
                step,
            )

    def delete_node_pools(self) -> None:
        eks = self.clients.eks
        for handle in self._targets(ResourceKind.NODE_POOL):
            cluster = handle.attributes.get("cluster", self.ctx.cluster_name)
            console.print(f"[yellow]\u2139\ufe0f  Deleting node group {handle.identifier} (this takes a few minutes)...[/yellow]")

            def _delete_pool(name: str = handle.identifier, cluster: str = cluster) -> None:
                eks.delete_nodegroup(clusterName=cluster, nodegroupName=name)
                eks.get_waiter("nodegroup_deleted").wait(
                    clusterName=cluster, nodegroupName=name, WaiterConfig=WAITER_DELETE,
                )

            self._delete(handle, _delete_pool, f"delete node group {handle.identifier}")

    def delete_clusters(self) -> None:
        eks = self.clients.eks
        for handle in self._targets(ResourceKind.CLUSTER):
            console.print(f"[yellow]\u2139\ufe0f  Deleting cluster {handle.identifier} (this takes a few minutes)...[/yellow]")

            def _delete_cluster(name: str = handle.identifier) -> None:
                eks.delete_cluster(name=name)
                eks.get_waiter("cluster_deleted").wait(name=name, WaiterConfig=WAITER_DELETE)

            self._delete(handle, _delete_cluster, f"delete cluster {handle.identifier}")

    def sweep_security_groups(self) -> None:
        network = self._network()
        if network is None:
            return
        ec2 = self.clients.ec2
        groups = self._query(
            "describe security groups",
            lambda: ec2.describe_security_groups(
                Filters=[{"Name": "vpc-id", "Values": [network.identifier]}],
            ).get("SecurityGroups", []),
        )
        for group in groups:
            if group.get("GroupName") == "default":
                continue
            handle = self._discover(ResourceKind.SECURITY_GROUP, group["GroupId"], vpc_id=network.identifier)
            self._delete(
                handle,
                lambda gid=group["GroupId"]: ec2.delete_security_group(GroupId=gid),
                f"delete security group {group['GroupId']}",
            )

    def sweep_network_interfaces(self) -> None:
        network = self._network()
        if network is None:
            return
        ec2 = self.clients.ec2
        interfaces = self._query(
            "describe network interfaces",
            lambda: ec2.describe_network_interfaces(
                Filters=[{"Name": "vpc-id", "Values": [network.identifier]}],
            ).get("NetworkInterfaces", []),
        )
        for eni in interfaces:
            eni_id = eni["NetworkInterfaceId"]
            try:
                ec2.delete_network_interface(NetworkInterfaceId=eni_id)
                console.print(f"[green]  \u2713 Deleted network interface {eni_id}[/green]")
            except ClientError as err:
                if not is_absent_error(err):
                    self._failed(f"delete network interface {eni_id}", err)
            except Exception as err:
                self._failed(f"delete network interface {eni_id}", err)

    def delete_gateways(self) -> None:
        network = self._network()
        ec2 = self.clients.ec2
        if network is not None:
            attached = self._query(
                "describe internet gateways",
                lambda: ec2.describe_internet_gateways(
                    Filters=[{"Name": "attachment.vpc-id", "Values": [network.identifier]}],
                ).get("InternetGateways", []),
            )
            for igw in attached:
                self._discover(ResourceKind.GATEWAY, igw["InternetGatewayId"], vpc_id=network.identifier)
        for handle in self._targets(ResourceKind.GATEWAY):
            vpc_id = handle.attributes.get("vpc_id") or (network.identifier if network else None)

            def _detach_and_delete(igw_id: str = handle.identifier, vpc_id: str | None = vpc_id) -> None:
                if vpc_id:
                    try:
                        ec2.detach_internet_gateway(InternetGatewayId=igw_id, VpcId=vpc_id)
                    except ClientError as err:
                        if error_code(err) not in ("Gateway.NotAttached", "InvalidVpcID.NotFound"):
                            raise
                ec2.delete_internet_gateway(InternetGatewayId=igw_id)

            self._delete(handle, _detach_and_delete, f"delete internet gateway {handle.identifier}")

    def delete_subnets(self) -> None:
        ec2 = self.clients.ec2
        for handle in self._targets(ResourceKind.SUBNET):
            self._delete(
                handle,
                lambda sid=handle.identifier: ec2.delete_subnet(SubnetId=sid),
                f"delete subnet {handle.identifier}",
            )

    def delete_route_tables(self) -> None:
        ec2 = self.clients.ec2
        network = self._network()
        if network is not None:
            tables = self._query(
                "describe route tables",
                lambda: ec2.describe_route_tables(
                    Filters=[{"Name": "vpc-id", "Values": [network.identifier]}],
                ).get("RouteTables", []),
            )
            for table in tables:
                if any(assoc.get("Main") for assoc in table.get("Associations", [])):
                    continue
                self._discover(ResourceKind.ROUTE_TABLE, table["RouteTableId"])
        for handle in self._targets(ResourceKind.ROUTE_TABLE):
            self._delete(
                handle,
                lambda rt=handle.identifier: ec2.delete_route_table(RouteTableId=rt),
                f"delete route table {handle.identifier}",
            )

    def delete_networks(self) -> None:
        ec2 = self.clients.ec2
        for handle in self._targets(ResourceKind.NETWORK):
            step = f"delete VPC {handle.identifier}"
            retrying = self._retrying(NETWORK_DELETE_ATTEMPTS, NETWORK_DELETE_WAIT_SECONDS, step)
            self._delete(
                handle,
                lambda vpc=handle.identifier: retrying(ec2.delete_vpc, VpcId=vpc),
                step,
            )

    def delete_roles(self) -> None:
        iam = self.clients.iam
        for handle in self._targets(ResourceKind.IAM_ROLE):

            def _detach_and_delete(role: Handle = handle) -> None:
                for policy_arn in list(role.attributes.get("policies", [])):
                    try:
                        iam.detach_role_policy(RoleName=role.identifier, PolicyArn=policy_arn)
                    except ClientError as err:
                        if error_code(err) != "NoSuchEntity":
                            raise
                    role.attributes["policies"].remove(policy_arn)
                iam.delete_role(RoleName=role.identifier)

            self._delete(handle, _detach_and_delete, f"delete IAM role {handle.identifier}")

    def delete_repositories(self) -> None:
        ecr = self.clients.ecr
        for handle in self._targets(ResourceKind.REGISTRY_REPO):
            self._delete(
                handle,
                lambda name=handle.identifier: ecr.delete_repository(repositoryName=name, force=True),
                f"delete ECR repository {handle.identifier}",
            )

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def run(self) -> TeardownReport:
        """Run every step in order. Exceptions from a step are logged, never raised."""
        console.print(Panel.fit(f"Tearing down {self.ctx.cluster_name}", style="bold blue"))
        steps = [
            self.terminate_instances,
            self.delete_load_balancers,
            self.delete_security_groups,
            self.delete_node_pools,
            self.delete_clusters,
            self.sweep_security_groups,
            self.sweep_network_interfaces,
            self.delete_gateways,
            self.delete_subnets,
            self.delete_route_tables,
            self.delete_networks,
            self.delete_roles,
            self.delete_repositories,
        ]
        for step in steps:
            try:
                step()
            except Exception as err:
                self._failed(step.__name__, err)
        if self.report.clean:
            console.print(f"[green]\u2705 Teardown complete ({len(self.report.deleted)} resources deleted)[/green]")
        else:
            console.print(
                f"[yellow]\u26a0\ufe0f  Teardown finished with {len(self.report.failures)} failures; "
                "check the AWS console for leftovers[/yellow]"
            )
        return self.report
