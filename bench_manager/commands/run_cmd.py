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

"""Run subcommand: one complete benchmark with guaranteed teardown."""

from __future__ import annotations

import sys
from pathlib import Path

import typer

from bench_manager.config import BenchConfig
from bench_manager.orchestrator import run_benchmark


def run(
    cluster_name: str | None = typer.Option(None, "--cluster-name", help="EKS cluster name"),
    framework: str | None = typer.Option(None, "--framework", help="Workload sub-directory to benchmark"),
    node_count: int | None = typer.Option(None, "--node-count", help="Number of workload nodes"),
    node_type: str | None = typer.Option(None, "--node-type", help="EC2 instance type of the workload nodes"),
    benchmarks_dir: Path | None = typer.Option(None, "--benchmarks-dir", help="Directory holding the workloads"),
    skip_diagnostics: bool = typer.Option(False, "--skip-diagnostics", help="Skip pre/post benchmark diagnostics"),
) -> None:
    """Provision, benchmark both image variants, record results, and tear down."""
    config = BenchConfig()
    overrides: dict = {}
    if cluster_name is not None:
        overrides["cluster_name"] = cluster_name
    if framework is not None:
        overrides["framework"] = framework
    if node_count is not None:
        overrides["node_count"] = node_count
    if node_type is not None:
        overrides["node_type"] = node_type
    if benchmarks_dir is not None:
        overrides["benchmarks_dir"] = benchmarks_dir
    if overrides:
        config = config.model_copy(update=overrides)

    sys.exit(run_benchmark(config, skip_diagnostics=skip_diagnostics))
