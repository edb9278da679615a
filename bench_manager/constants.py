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

"""Constants: defaults, poll ceilings, policies, and console-output patterns."""

from __future__ import annotations

import re
from pathlib import Path

PACKAGE_DIR = Path(__file__).resolve().parent
BOOTSTRAP_TEMPLATE = PACKAGE_DIR / "bootstrap.sh"

# -- Configuration defaults --
DEFAULT_CLUSTER_PREFIX = "caged-benchmark"
DEFAULT_NODE_TYPE = "m5.2xlarge"
DEFAULT_NODE_COUNT = 6
DEFAULT_FRAMEWORK = "next"
DEFAULT_AMI_ID = "ami-07b2b18045edffe90"  # Amazon Linux 2023 arm64
DEFAULT_LOADTEST_INSTANCE_TYPE = "c7gn.2xlarge"
DEFAULT_ECR_REPO_NAME = "caged-benchmark"
DEFAULT_STANDARD_BASE_IMAGE = "node:25-bookworm-slim"
DEFAULT_CAGED_BASE_IMAGE = "platformatic/node-caged:slim"

REQUIRED_TOOLS = ("kubectl", "docker", "aws")

# -- Workload directory layout --
WORKLOAD_DOCKERFILE = "Dockerfile"
WORKLOAD_MANIFEST = "kube.yaml"
WORKLOAD_SCENARIO = "loadtest.js"
PLACEHOLDER_STANDARD = "IMAGE_PLACEHOLDER_STANDARD"
PLACEHOLDER_CAGED = "IMAGE_PLACEHOLDER_CAGED"

# -- Image variants --
VARIANT_STANDARD = "standard"
VARIANT_CAGED = "caged"
IMAGE_PLATFORM = "linux/amd64"
VERSION_PROBE_COMMAND = ["node", "--version"]

# -- Tags --
TAG_USE_KEY = "Use"
TAG_USE_VALUE = "CagedBenchmark"

# -- Network layout --
VPC_CIDR = "10.0.0.0/16"
SUBNET_CIDRS = ("10.0.1.0/24", "10.0.2.0/24")
DEFAULT_ROUTE_CIDR = "0.0.0.0/0"

# -- IAM --
CLUSTER_ROLE_SERVICE = "eks.amazonaws.com"
NODE_ROLE_SERVICE = "ec2.amazonaws.com"
CLUSTER_ROLE_POLICIES = (
    "arn:aws:iam::aws:policy/AmazonEKSClusterPolicy",
)
NODE_ROLE_POLICIES = (
    "arn:aws:iam::aws:policy/AmazonEKSWorkerNodePolicy",
    "arn:aws:iam::aws:policy/AmazonEC2ContainerRegistryPullOnly",
    "arn:aws:iam::aws:policy/AmazonEKS_CNI_Policy",
)

# -- Convergence ceilings (interval seconds, max attempts) --
CLUSTER_POLL_INTERVAL_SECONDS = 15
CLUSTER_POLL_MAX_ATTEMPTS = 60
NODEGROUP_POLL_INTERVAL_SECONDS = 10
NODEGROUP_POLL_MAX_ATTEMPTS = 60
NODES_READY_POLL_INTERVAL_SECONDS = 5
NODES_READY_POLL_MAX_ATTEMPTS = 60
PODS_READY_POLL_INTERVAL_SECONDS = 5
PODS_READY_POLL_MAX_ATTEMPTS = 120
LB_HOSTNAME_POLL_INTERVAL_SECONDS = 10
LB_HOSTNAME_POLL_MAX_ATTEMPTS = 60
IMAGE_VERIFY_POLL_INTERVAL_SECONDS = 5
IMAGE_VERIFY_POLL_MAX_ATTEMPTS = 12
MONITOR_POLL_INTERVAL_SECONDS = 10
MONITOR_POLL_MAX_ATTEMPTS = 540  # 90 minutes

# -- Boto waiter configs --
WAITER_RUNNING = {"Delay": 10, "MaxAttempts": 60}
WAITER_DELETE = {"Delay": 10, "MaxAttempts": 120}

# -- Teardown --
LB_SETTLE_SECONDS = 60
SECURITY_GROUP_DELETE_ATTEMPTS = 5
SECURITY_GROUP_DELETE_WAIT_SECONDS = 10
NETWORK_DELETE_ATTEMPTS = 3
NETWORK_DELETE_WAIT_SECONDS = 10

ABSENT_ERROR_CODES = frozenset({
    "InvalidInstanceID.NotFound",
    "InvalidGroup.NotFound",
    "InvalidNetworkInterfaceID.NotFound",
    "InvalidInternetGatewayID.NotFound",
    "InvalidSubnetID.NotFound",
    "InvalidRouteTableID.NotFound",
    "InvalidVpcID.NotFound",
    "LoadBalancerNotFound",
    "ResourceNotFoundException",
    "NoSuchEntity",
    "RepositoryNotFoundException",
})
DEPENDENCY_ERROR_CODES = frozenset({
    "DependencyViolation",
    "InvalidGroup.InUse",
    "ResourceInUseException",
    "DeleteConflict",
})

# -- Workload API --
SYSTEM_NAMESPACES = frozenset({"kube-system", "kube-public", "kube-node-lease"})
EXPOSE_ANNOTATION = "benchmark.platformatic.dev/expose"
INSTANCE_LABEL = "app.kubernetes.io/instance"
KUBECTL_TIMEOUT_SECONDS = 60
STATUS_DUMP_EVERY = 10

# -- Load test --
LOAD_TEST_TARGETS = ("node-standard", "node-caged", "watt-standard", "watt-caged")
USER_DATA_LIMIT_BYTES = 16 * 1024
REMOTE_RESULTS_LOG = "/var/log/benchmark-results.log"
PRECHECK_MAX_RETRIES = 30
PRECHECK_RETRY_DELAY_SECONDS = 10
WARMUP_DURATION_SECONDS = 60
RECONNECT_WARMUP_DURATION_SECONDS = 20
PRE_MEASURE_SETTLE_SECONDS = 60
MEASURE_RAMP_SECONDS = 60
MEASURE_STEADY_SECONDS = 120
MEASURE_TARGET_RATE = 400
COOLDOWN_SECONDS = 480
KERNEL_TUNING = (
    "net.core.rmem_default=268435456",
    "net.core.wmem_default=268435456",
    "net.core.rmem_max=268435456",
    "net.core.wmem_max=268435456",
    "net.core.netdev_max_backlog=100000",
    "net.ipv4.tcp_rmem=4096 16384 134217728",
    "net.ipv4.tcp_wmem=4096 16384 134217728",
    "net.ipv4.tcp_mem=786432 1048576 268435456",
    "net.ipv4.tcp_max_tw_buckets=360000",
    "net.ipv4.tcp_max_syn_backlog=10000",
    "net.ipv4.ip_local_port_range=1024 65535",
    "net.ipv4.tcp_tw_reuse=1",
    "net.core.somaxconn=10000",
    "vm.min_free_kbytes=65536",
    "vm.swappiness=0",
    "fs.file-max=2097152",
    "fs.nr_open=2097152",
)

# -- Console output classification --
START_MARKER = "Starting benchmark"
COMPLETION_MARKER = "Benchmark completed"
ABORT_MARKER = "Benchmark aborted"
TERMINAL_INSTANCE_STATES = frozenset({"terminated", "shutting-down"})
FATAL_PATTERN = re.compile(
    r"fatal error|panic|segmentation fault|out of memory|killed|failed to start",
    re.IGNORECASE,
)
BOOT_FAILURE_PATTERN = re.compile(r"Cloud-init.*finished.*result: fail|CRITICAL.*cloud-init")
CLOUD_INIT_PREFIX = re.compile(r"^\[[^]]+\] cloud-init\[\d+\]: ")
ECHOED_COMMAND_PREFIX = "+ "
BOOT_NOISE_PATTERN = re.compile(
    r"docker run|entered blocking|entered disabled|entered promiscuous|left promiscuous"
    r"|renamed from|link becomes ready|entered forwarding"
)
TEST_HEADER_PATTERN = re.compile(r"^TEST (\d+): (.+)$")

# -- Output files --
RUN_LOG_TEMPLATE = "benchmark_{timestamp}.log"
RESULTS_FILE_TEMPLATE = "{framework}-caged-{timestamp}.log"
STATE_FILE_TEMPLATE = "{cluster}.state.json"
KUBECONFIG_TEMPLATE = "{cluster}.kubeconfig"
