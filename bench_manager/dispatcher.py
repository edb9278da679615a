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

"""Load-test instance launch and boot script rendering."""

from __future__ import annotations

import gzip
import string
from dataclasses import dataclass
from pathlib import Path

from botocore.exceptions import ClientError, WaiterError
from rich.panel import Panel

from bench_manager import console
from bench_manager.aws import AwsClients, tag_spec
from bench_manager.config import BenchConfig
from bench_manager.constants import (
    ABORT_MARKER,
    BOOTSTRAP_TEMPLATE,
    COOLDOWN_SECONDS,
    KERNEL_TUNING,
    LOAD_TEST_TARGETS,
    MEASURE_RAMP_SECONDS,
    MEASURE_STEADY_SECONDS,
    MEASURE_TARGET_RATE,
    PRE_MEASURE_SETTLE_SECONDS,
    PRECHECK_MAX_RETRIES,
    PRECHECK_RETRY_DELAY_SECONDS,
    REMOTE_RESULTS_LOG,
    USER_DATA_LIMIT_BYTES,
    WAITER_RUNNING,
    WORKLOAD_SCENARIO,
)
from bench_manager.context import RunContext, RunPhase
from bench_manager.errors import ProvisioningError
from bench_manager.registry import ResourceKind


class BootstrapTemplate(string.Template):
    delimiter = "@@"


@dataclass(frozen=True)
class LoadTarget:
    """One endpoint the load-test instance measures.

    Attributes:
        service: Kubernetes service name.
        label: Target label with the framework prefix stripped (e.g. ``node-caged``).
        env_var: Environment variable exported with the URL on the instance.
        url: ``http://<hostname>``.
    """

    service: str
    label: str
    env_var: str
    url: str


def target_label(service: str, framework: str | None) -> str:
    prefix = f"{framework}-" if framework else ""
    return service[len(prefix):] if prefix and service.startswith(prefix) else service


def build_targets(endpoints: dict[str, str], framework: str | None) -> list[LoadTarget]:
    """Order the discovered endpoints into load targets.

    Known labels come first in their canonical order, the rest by name.
    """
    targets = []
    for service, hostname in endpoints.items():
        label = target_label(service, framework)
        env_var = "URL_" + label.upper().replace("-", "_")
        targets.append(LoadTarget(service, label, env_var, f"http://{hostname}"))

    def _key(t: LoadTarget) -> tuple[int, str]:
        rank = LOAD_TEST_TARGETS.index(t.label) if t.label in LOAD_TEST_TARGETS else len(LOAD_TEST_TARGETS)
        return rank, t.label

    return sorted(targets, key=_key)


# ============================================================================
# Boot script
# ============================================================================

def render_bootstrap(targets: list[LoadTarget], scenario: str) -> str:
    """Render the boot script running every phase against every target.

    Args:
        targets: Ordered load targets.
        scenario: k6 measurement script of the workload.

    Returns:
        The complete shell script.
    """
    exports = "\n".join(f'  export {t.env_var}="{t.url}"' for t in targets)
    prechecks = "\n".join(
        f'  precheck "{t.label}" "${t.env_var}/" || {{ echo "{ABORT_MARKER}: {t.label} unreachable"; exit 1; }}'
        for t in targets
    )
    warmups = "\n".join(f'  warmup "{t.label}" "${t.env_var}"' for t in targets)
    measurements = []
    for num, t in enumerate(targets, start=1):
        if num > 1:
            measurements.append(f'  echo "=== Cooldown: {COOLDOWN_SECONDS}s ==="')
            measurements.append(f"  sleep {COOLDOWN_SECONDS}")
        measurements.append(f'  reconnect "{t.label}" "${t.env_var}"')
        measurements.append(f'  measure "{t.label}" "${t.env_var}" {num}')
    tuning = "\n".join(f'sysctl -w "{setting}" || true' for setting in KERNEL_TUNING)

    template = BootstrapTemplate(BOOTSTRAP_TEMPLATE.read_text())
    return template.substitute(
        results_log=REMOTE_RESULTS_LOG,
        kernel_tuning=tuning,
        scenario=scenario.rstrip("\n"),
        precheck_retries=PRECHECK_MAX_RETRIES,
        precheck_delay=PRECHECK_RETRY_DELAY_SECONDS,
        settle=PRE_MEASURE_SETTLE_SECONDS,
        ramp=MEASURE_RAMP_SECONDS,
        steady=MEASURE_STEADY_SECONDS,
        rate=MEASURE_TARGET_RATE,
        target_exports=exports,
        prechecks=prechecks,
        warmups=warmups,
        measurements="\n".join(measurements),
    )


def encode_user_data(script: str) -> bytes:
    """Gzip ``script`` for the instance metadata channel.

    boto3 base64-encodes ``UserData`` itself, so the compressed bytes are
    passed through as-is.

    Raises:
        ProvisioningError: If the compressed script exceeds the user-data limit.
    """
    data = gzip.compress(script.encode(), compresslevel=9)
    if len(data) > USER_DATA_LIMIT_BYTES:
        raise ProvisioningError(
            f"Boot script is {len(data)} bytes compressed; the limit is {USER_DATA_LIMIT_BYTES}"
        )
    return data


# ============================================================================
# Instance
# ============================================================================

def create_security_group(ctx: RunContext, clients: AwsClients) -> str:
    """Create the load-test instance's security group in the run's network.

    Returns:
        The security group id.
    """
    network = ctx.handle(ResourceKind.NETWORK)
    if network is None:
        raise ProvisioningError("No network available for the load-test instance")
    group_id = clients.ec2.create_security_group(
        GroupName=f"{ctx.cluster_name}-loadtest-sg",
        Description="Temporary security group for the load-test instance",
        VpcId=network.identifier,
        TagSpecifications=tag_spec("security-group", ctx.cluster_name, "loadtest-sg"),
    )["GroupId"]
    ctx.registry.register(ResourceKind.SECURITY_GROUP, group_id, vpc_id=network.identifier)
    console.print(f"[green]  \u2713 Security group {group_id}[/green]")
    return group_id


def launch_instance(ctx: RunContext, clients: AwsClients, config: BenchConfig, user_data: bytes,
                    group_id: str) -> str:
    """Launch the load-test instance and wait until it is running.

    Returns:
        The instance id.
    """
    subnets = ctx.identifiers(ResourceKind.SUBNET)
    if not subnets:
        raise ProvisioningError("No subnet available for the load-test instance")
    ec2 = clients.ec2
    instance_id = ec2.run_instances(
        ImageId=config.ami_id,
        InstanceType=config.loadtesting_instance_type,
        MinCount=1,
        MaxCount=1,
        UserData=user_data,
        SubnetId=subnets[0],
        SecurityGroupIds=[group_id],
        TagSpecifications=tag_spec("instance", ctx.cluster_name, "loadtest"),
    )["Instances"][0]["InstanceId"]
    ctx.registry.register(ResourceKind.COMPUTE_INSTANCE, instance_id)
    ec2.get_waiter("instance_running").wait(InstanceIds=[instance_id], WaiterConfig=WAITER_RUNNING)
    console.print(f"[green]  \u2713 Load-test instance {instance_id} running[/green]")
    return instance_id


# ============================================================================
# Public API
# ============================================================================

def dispatch_load_test(ctx: RunContext, clients: AwsClients, config: BenchConfig) -> str:
    """Launch the load-test instance against the discovered endpoints.

    Returns:
        The instance id.

    Raises:
        ProvisioningError: If the script is too large or any launch step fails.
    """
    console.print(Panel.fit("Dispatching load test", style="bold blue"))
    targets = build_targets(ctx.endpoints, ctx.framework)
    if not targets:
        raise ProvisioningError("No endpoints to load test")
    for t in targets:
        console.print(f"  {t.env_var}={t.url}")
    scenario = (Path(config.workload_dir) / WORKLOAD_SCENARIO).read_text()
    user_data = encode_user_data(render_bootstrap(targets, scenario))
    try:
        group_id = create_security_group(ctx, clients)
        instance_id = launch_instance(ctx, clients, config, user_data, group_id)
    except (ClientError, WaiterError) as err:
        raise ProvisioningError(f"Load-test instance launch failed: {err}") from err
    ctx.advance(RunPhase.DISPATCHED)
    return instance_id
