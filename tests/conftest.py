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

"""Shared fixtures: fake AWS clients, ClientError factory, and no-op sleeps."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from bench_manager.config import BenchConfig
from bench_manager.context import RunContext


def client_error(code: str, operation: str = "Operation") -> ClientError:
    """Build a botocore ClientError carrying ``code``."""
    return ClientError({"Error": {"Code": code, "Message": f"{code} raised by test"}}, operation)


@pytest.fixture(autouse=True)
def no_sleep():
    """Make tenacity waits and settle pauses instant."""
    with patch("time.sleep") as mock_sleep:
        yield mock_sleep


@pytest.fixture
def clients():
    """MagicMock stand-in for AwsClients with empty describe results."""
    fake = MagicMock()
    fake.region = "us-east-1"
    fake.account_id.return_value = "123456789012"
    fake.ec2.describe_security_groups.return_value = {"SecurityGroups": []}
    fake.ec2.describe_network_interfaces.return_value = {"NetworkInterfaces": []}
    fake.ec2.describe_internet_gateways.return_value = {"InternetGateways": []}
    fake.ec2.describe_route_tables.return_value = {"RouteTables": []}
    fake.elbv2.describe_load_balancers.return_value = {"LoadBalancers": []}
    return fake


@pytest.fixture
def ctx():
    return RunContext(cluster_name="bench-test", profile="bench", region="us-east-1",
                      account_id="123456789012", framework="next")


MANIFEST = """\
apiVersion: apps/v1
kind: Deployment
metadata:
  name: next-node-standard
spec:
  template:
    spec:
      containers:
        - name: app
          image: IMAGE_PLACEHOLDER_STANDARD
---
apiVersion: apps/v1
kind: Deployment
metadata:
  name: next-node-caged
spec:
  template:
    spec:
      containers:
        - name: app
          image: IMAGE_PLACEHOLDER_CAGED
"""


@pytest.fixture
def config(tmp_path):
    """BenchConfig pointing at a complete workload directory under tmp_path."""
    workload = tmp_path / "next"
    workload.mkdir()
    (workload / "Dockerfile").write_text("ARG BASE_IMAGE\nFROM ${BASE_IMAGE}\n")
    (workload / "kube.yaml").write_text(MANIFEST)
    (workload / "loadtest.js").write_text("export default function () {}\n")
    return BenchConfig(
        cluster_name="bench-test",
        aws_profile="bench",
        aws_region="us-east-1",
        framework="next",
        node_count=2,
        ecr_repo_name="caged-benchmark",
        benchmarks_dir=tmp_path,
    )
