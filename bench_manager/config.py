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

"""Benchmark configuration, loaded from environment variables."""

from __future__ import annotations

import time
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.panel import Panel
from rich.table import Table

from bench_manager import console
from bench_manager.constants import (
    DEFAULT_AMI_ID,
    DEFAULT_CAGED_BASE_IMAGE,
    DEFAULT_CLUSTER_PREFIX,
    DEFAULT_ECR_REPO_NAME,
    DEFAULT_FRAMEWORK,
    DEFAULT_LOADTEST_INSTANCE_TYPE,
    DEFAULT_NODE_COUNT,
    DEFAULT_NODE_TYPE,
    DEFAULT_STANDARD_BASE_IMAGE,
    WORKLOAD_DOCKERFILE,
    WORKLOAD_MANIFEST,
    WORKLOAD_SCENARIO,
)
from bench_manager.errors import PreconditionError


def _default_cluster_name() -> str:
    return f"{DEFAULT_CLUSTER_PREFIX}-{int(time.time())}"


# ============================================================================
# Configuration classes
# ============================================================================

class BenchConfig(BaseSettings):
    """Benchmark run configuration, auto-loaded from plain env vars.

    Attributes:
        cluster_name: Name of the EKS cluster and prefix of every resource name.
        aws_profile: AWS CLI profile used for all API calls. Required.
        aws_region: AWS region, or None to use the profile's region.
        node_type: EC2 instance type of the workload node pool.
        node_count: Fixed size of the workload node pool.
        framework: Workload sub-directory under ``benchmarks_dir``.
        ami_id: Machine image of the load-test instance.
        loadtesting_instance_type: EC2 instance type of the load-test instance.
        ecr_repo_name: ECR repository receiving both image variants.
        standard_base_image: Base image of the baseline variant.
        caged_base_image: Base image of the modified-runtime variant.
        benchmarks_dir: Directory holding one sub-directory per framework.
        results_dir: Results directory, or None for ``<benchmarks_dir>/results``.
        logs_dir: Run log and state directory, or None for ``benchmarks_dir``.
    """

    model_config = SettingsConfigDict(extra="ignore", case_sensitive=False)

    cluster_name: str = Field(default_factory=_default_cluster_name, pattern=r"^[A-Za-z][A-Za-z0-9-]{0,99}$")
    aws_profile: str | None = None
    aws_region: str | None = None
    node_type: str = DEFAULT_NODE_TYPE
    node_count: int = Field(default=DEFAULT_NODE_COUNT, ge=1, le=100)
    framework: str = DEFAULT_FRAMEWORK
    ami_id: str = Field(default=DEFAULT_AMI_ID, pattern=r"^ami-[0-9a-f]+$")
    loadtesting_instance_type: str = DEFAULT_LOADTEST_INSTANCE_TYPE
    ecr_repo_name: str = DEFAULT_ECR_REPO_NAME
    standard_base_image: str = DEFAULT_STANDARD_BASE_IMAGE
    caged_base_image: str = DEFAULT_CAGED_BASE_IMAGE
    benchmarks_dir: Path = Field(default_factory=Path.cwd)
    results_dir: Path | None = None
    logs_dir: Path | None = None

    @property
    def workload_dir(self) -> Path:
        """Directory of the selected framework's workload files."""
        return self.benchmarks_dir / self.framework

    @property
    def resolved_results_dir(self) -> Path:
        return self.results_dir or self.benchmarks_dir / "results"

    @property
    def resolved_logs_dir(self) -> Path:
        return self.logs_dir or self.benchmarks_dir


def validate_config(config: BenchConfig) -> None:
    """Check the settings and workload files a run cannot start without.

    Args:
        config: Resolved benchmark configuration.

    Raises:
        PreconditionError: If ``AWS_PROFILE`` is unset or a workload file is missing.
    """
    if not config.aws_profile:
        raise PreconditionError("AWS_PROFILE environment variable is not set")
    if not config.workload_dir.is_dir():
        raise PreconditionError(f"Workload directory not found: {config.workload_dir}")
    for name in (WORKLOAD_DOCKERFILE, WORKLOAD_MANIFEST, WORKLOAD_SCENARIO):
        if not (config.workload_dir / name).is_file():
            raise PreconditionError(f"Missing {name} in {config.workload_dir}")


def display_config(config: BenchConfig) -> None:
    """Print the resolved configuration."""
    table = Table(show_header=False, box=None)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    rows = [
        ("Cluster", config.cluster_name),
        ("Profile", config.aws_profile or "[red]<unset>[/red]"),
        ("Region", config.aws_region or "<profile default>"),
        ("Nodes", f"{config.node_count} x {config.node_type}"),
        ("Framework", config.framework),
        ("Load tester", f"{config.loadtesting_instance_type} ({config.ami_id})"),
        ("ECR repository", config.ecr_repo_name),
        ("Standard base", config.standard_base_image),
        ("Caged base", config.caged_base_image),
        ("Workload dir", str(config.workload_dir)),
        ("Results dir", str(config.resolved_results_dir)),
        ("Logs dir", str(config.resolved_logs_dir)),
    ]
    for key, value in rows:
        table.add_row(key, value)
    console.print(Panel.fit(table, title="Benchmark configuration", style="bold blue"))
