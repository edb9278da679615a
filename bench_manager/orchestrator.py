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

"""Orchestration functions that compose the phases into a benchmark run."""

from __future__ import annotations

import signal
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path

from rich.panel import Panel

from bench_manager import console, logger
from bench_manager.aws import AwsClients
from bench_manager.cluster import build_cluster
from bench_manager.config import BenchConfig, display_config, validate_config
from bench_manager.constants import REQUIRED_TOOLS, RUN_LOG_TEMPLATE, STATE_FILE_TEMPLATE
from bench_manager.context import RunContext, RunPhase
from bench_manager.deployment import deploy_workload
from bench_manager.diagnostics import post_benchmark, pre_benchmark
from bench_manager.dispatcher import dispatch_load_test
from bench_manager.errors import BenchmarkError, LoadTestError, RunInterrupted
from bench_manager.images import publish_images
from bench_manager.monitor import ConsoleMonitor
from bench_manager.provisioner import provision
from bench_manager.results import BenchmarkResult
from bench_manager.teardown import TeardownManager, TeardownReport
from bench_manager.utils import require_command

_HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


# ============================================================================
# Internal helpers
# ============================================================================

def _check_prerequisites(config: BenchConfig) -> None:
    """Check CLI tools, settings, and workload files.

    Raises:
        PreconditionError: If anything required is missing.
    """
    console.print(Panel.fit("Checking prerequisites", style="bold blue"))
    for cmd in REQUIRED_TOOLS:
        require_command(cmd)
    validate_config(config)
    console.print("[green]\u2705 All required tools and settings are available[/green]")


def _raise_interrupt(signum, _frame) -> None:
    raise RunInterrupted(f"Interrupted by {signal.Signals(signum).name}")


@contextmanager
def _signals(handler):
    """Install ``handler`` for SIGINT/SIGTERM, restoring the previous handlers on exit."""
    previous = {sig: signal.getsignal(sig) for sig in _HANDLED_SIGNALS}
    for sig in _HANDLED_SIGNALS:
        signal.signal(sig, handler)
    try:
        yield
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)


def _teardown(ctx: RunContext, clients: AwsClients | None) -> TeardownReport:
    """Run the teardown manager once with further interrupts ignored."""
    if clients is None:
        logger.info("no AWS session was created; nothing to tear down")
        return TeardownReport()
    with _signals(signal.SIG_IGN):
        report = TeardownManager(ctx, clients).run()
    if report.clean and ctx.state_path is not None and ctx.state_path.exists():
        ctx.state_path.unlink()
    elif ctx.state_path is not None:
        console.print(f"[yellow]\u26a0\ufe0f  Run state kept at {ctx.state_path}; "
                      f"retry with: bench-manager destroy --state {ctx.state_path}[/yellow]")
    return report


def _run_phases(ctx: RunContext, clients: AwsClients, config: BenchConfig, run_log: Path, *,
                skip_diagnostics: bool, docker_client=None) -> Path:
    """Run the happy path from provisioning to the flushed result.

    Returns:
        Path of the results file.
    """
    provision(ctx, clients, config)
    publish_images(ctx, clients, config, docker_client=docker_client)
    build_cluster(ctx, clients, config)
    deploy_workload(ctx, config.workload_dir)
    if not skip_diagnostics:
        pre_benchmark(ctx)
    instance_id = dispatch_load_test(ctx, clients, config)

    monitor = ConsoleMonitor(
        clients, instance_id, run_log.with_suffix(".console.log"),
        header={"Cluster": ctx.cluster_name, "Framework": config.framework,
                "Standard base": config.standard_base_image, "Caged base": config.caged_base_image},
    )
    window = monitor.run()

    result = BenchmarkResult(config.framework, ctx.cluster_name, ctx.images, ctx.runtime_version)
    result.ingest(window)
    path = result.flush(config.resolved_results_dir)
    console.print(f"[green]\u2705 Benchmark results saved to {path}[/green]")
    if not skip_diagnostics:
        post_benchmark(ctx)
    ctx.advance(RunPhase.COMPLETED)
    return path


# ============================================================================
# Public API
# ============================================================================

def run_benchmark(config: BenchConfig, *, skip_diagnostics: bool = False, clients: AwsClients | None = None,
                  docker_client=None) -> int:
    """Run a complete benchmark and tear everything down afterwards.

    Teardown runs exactly once on every exit path after an AWS session exists.

    Args:
        config: Resolved configuration.
        skip_diagnostics: Skip the pre/post benchmark diagnostics.
        clients: Pre-built AWS clients, or None to create them from the config.
        docker_client: Docker client, or None for ``docker.from_env()``.

    Returns:
        Process exit code: 0 on success, 1 on failure, 130 when interrupted.
    """
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    logs_dir = config.resolved_logs_dir
    run_log = logs_dir / RUN_LOG_TEMPLATE.format(timestamp=timestamp)

    with console.mirrored(run_log):
        console.print(Panel.fit(
            f"Benchmark {config.cluster_name}: {config.framework}\n"
            f"{config.standard_base_image} vs {config.caged_base_image}",
            style="bold blue",
        ))
        display_config(config)
        ctx = RunContext(
            cluster_name=config.cluster_name,
            profile=config.aws_profile,
            region=config.aws_region,
            framework=config.framework,
        )
        exit_code = 0
        with _signals(_raise_interrupt):
            try:
                _check_prerequisites(config)
                if clients is None:
                    clients = AwsClients(config.aws_profile, config.aws_region)
                ctx.region = clients.region
                ctx.account_id = clients.account_id()
                ctx.state_path = logs_dir / STATE_FILE_TEMPLATE.format(cluster=config.cluster_name)
                ctx.advance(RunPhase.PRECHECKED)
                _run_phases(ctx, clients, config, run_log, skip_diagnostics=skip_diagnostics, docker_client=docker_client)
            except LoadTestError as err:
                console.print(f"[red]\u274c {err}[/red]")
                if not skip_diagnostics:
                    post_benchmark(ctx)
                exit_code = err.exit_code
            except BenchmarkError as err:
                console.print(f"[red]\u274c {err}[/red]")
                exit_code = err.exit_code
            except KeyboardInterrupt:
                console.print("[red]\u274c Interrupted[/red]")
                exit_code = RunInterrupted.exit_code
            except Exception as err:
                logger.exception("unexpected failure")
                console.print(f"[red]\u274c {err}[/red]")
                exit_code = 1
            finally:
                _teardown(ctx, clients)

        console.print(f"Run log: {run_log}")
        if exit_code == 0:
            console.print("[green]\u2705 Benchmark run succeeded[/green]")
        else:
            console.print(f"[red]\u274c Benchmark run failed (exit code {exit_code}) at phase {ctx.phase.name}[/red]")
    return exit_code


def destroy_from_state(state_path: Path, clients: AwsClients | None = None) -> int:
    """Tear down the resources recorded in a persisted run state.

    Returns:
        0 if every step succeeded, 1 otherwise.
    """
    ctx = RunContext.load(state_path)
    console.print(f"[yellow]\u2139\ufe0f  Loaded {len(ctx.registry)} handles for {ctx.cluster_name} "
                  f"(reached {ctx.phase.name})[/yellow]")
    if clients is None:
        clients = AwsClients(ctx.profile, ctx.region)
    report = _teardown(ctx, clients)
    return 0 if report.clean else 1
