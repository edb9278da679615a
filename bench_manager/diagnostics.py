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

"""Cluster and endpoint diagnostics printed around the load test. Never raises."""

from __future__ import annotations

import time
from pathlib import Path

import requests
from rich.panel import Panel

from bench_manager import console, logger
from bench_manager.constants import INSTANCE_LABEL
from bench_manager.context import RunContext
from bench_manager.utils import kubectl_json, run_kubectl

HEALTH_CHECK_REQUESTS = 5
HEALTH_CHECK_TIMEOUT_SECONDS = 10
POD_LOG_TAIL_LINES = 50
EVENT_TAIL = 50
PROBLEM_STATES = ("OOMKilled", "CrashLoopBackOff", "Error")


def _section(title: str, args: list[str], kubeconfig: Path | None, fallback: str = "(unavailable)") -> None:
    console.print(f"[bold]--- {title} ---[/bold]")
    ok, stdout, stderr = run_kubectl(args, kubeconfig=kubeconfig)
    text = stdout if ok and stdout.strip() else fallback
    if not ok:
        logger.debug("kubectl %s failed: %s", " ".join(args), stderr.strip())
    console.print(text, markup=False, highlight=False)


def _recent_events(kubeconfig: Path | None) -> None:
    console.print(f"[bold]--- Last {EVENT_TAIL} events ---[/bold]")
    ok, stdout, _ = run_kubectl(["get", "events", "-A", "--sort-by=.lastTimestamp"], kubeconfig=kubeconfig)
    lines = stdout.splitlines() if ok else []
    if len(lines) > EVENT_TAIL + 1:
        lines = lines[:1] + lines[-EVENT_TAIL:]
    console.print("\n".join(lines) or "(no events)", markup=False, highlight=False)


def _resource_usage(kubeconfig: Path | None) -> None:
    _section("Node resource usage", ["top", "nodes"], kubeconfig, "(metrics-server not available)")
    _section("Pod resource usage", ["top", "pods", "-A"], kubeconfig, "(metrics-server not available)")


def pod_distribution(pods: dict) -> dict[str, int]:
    """Count pods per node."""
    counts: dict[str, int] = {}
    for pod in pods.get("items", []):
        node = pod.get("spec", {}).get("nodeName") or "<unscheduled>"
        counts[node] = counts.get(node, 0) + 1
    return counts


def problem_pods(pods: dict) -> list[str]:
    """Pods whose containers are or were OOMKilled, crash-looping, or errored."""
    found = []
    for pod in pods.get("items", []):
        name = f"{pod['metadata'].get('namespace')}/{pod['metadata']['name']}"
        for status in pod.get("status", {}).get("containerStatuses", []):
            states = [status.get("state", {}), status.get("lastState", {})]
            reasons = {s.get("reason") for st in states for s in st.values() if isinstance(s, dict)}
            hit = sorted(r for r in reasons if r in PROBLEM_STATES)
            if hit:
                found.append(f"{name}: {', '.join(hit)}")
    return found


def restart_counts(pods: dict) -> dict[str, int]:
    return {
        f"{p['metadata'].get('namespace')}/{p['metadata']['name']}":
            sum(c.get("restartCount", 0) for c in p.get("status", {}).get("containerStatuses", []))
        for p in pods.get("items", [])
    }


# ============================================================================
# Endpoint health
# ============================================================================

def check_endpoint(url: str, session: requests.Session | None = None) -> tuple[int, float | None]:
    """GET ``url`` a few times.

    Returns:
        Tuple of (successful responses, average latency in ms or None).
    """
    session = session or requests.Session()
    latencies = []
    for _ in range(HEALTH_CHECK_REQUESTS):
        start = time.monotonic()
        try:
            response = session.get(url, timeout=HEALTH_CHECK_TIMEOUT_SECONDS)
        except requests.RequestException as err:
            logger.debug("health check of %s failed: %s", url, err)
            continue
        if response.ok:
            latencies.append((time.monotonic() - start) * 1000)
    avg = sum(latencies) / len(latencies) if latencies else None
    return len(latencies), avg


def endpoint_health(endpoints: dict[str, str]) -> None:
    console.print("[bold]--- Endpoint health ---[/bold]")
    with requests.Session() as session:
        for service, hostname in sorted(endpoints.items()):
            ok, avg = check_endpoint(f"http://{hostname}/", session)
            latency = f"{avg:.1f}ms avg" if avg is not None else "no successful responses"
            colour = "green" if ok == HEALTH_CHECK_REQUESTS else "yellow"
            console.print(f"[{colour}]  {service}: {ok}/{HEALTH_CHECK_REQUESTS} OK, {latency}[/{colour}]")


# ============================================================================
# Public API
# ============================================================================

def pre_benchmark(ctx: RunContext) -> None:
    """Print cluster, workload, and endpoint state before the load test."""
    try:
        console.print(Panel.fit("Pre-benchmark diagnostics", style="bold blue"))
        kc = ctx.kubeconfig
        _section("Cluster info", ["cluster-info"], kc)
        _section("Nodes", ["get", "nodes", "-o", "wide"], kc)
        _section("Deployments", ["get", "deployments", "-o", "wide"], kc)
        _section("Pod resources", [
            "get", "pods", "-o",
            "custom-columns=NAME:.metadata.name,CPU_REQ:.spec.containers[*].resources.requests.cpu,"
            "MEM_REQ:.spec.containers[*].resources.requests.memory,"
            "CPU_LIM:.spec.containers[*].resources.limits.cpu,MEM_LIM:.spec.containers[*].resources.limits.memory",
        ], kc)
        _section("Services", ["get", "services", "-o", "wide"], kc)
        pods = kubectl_json(["get", "pods"], kubeconfig=kc) or {}
        console.print("[bold]--- Pod distribution ---[/bold]")
        for node, count in sorted(pod_distribution(pods).items()):
            console.print(f"  {node}: {count}")
        _resource_usage(kc)
        _recent_events(kc)
        endpoint_health(ctx.endpoints)
    except Exception as err:
        logger.warning("pre-benchmark diagnostics failed: %s", err)


def post_benchmark(ctx: RunContext) -> None:
    """Print usage, events, pod logs, and unhealthy pods after the load test or a failure."""
    try:
        console.print(Panel.fit("Post-benchmark diagnostics", style="bold blue"))
        kc = ctx.kubeconfig
        _resource_usage(kc)
        _recent_events(kc)
        for service in sorted(ctx.endpoints):
            _section(
                f"Pod logs: {service}",
                ["logs", "-l", f"{INSTANCE_LABEL}={service}", f"--tail={POD_LOG_TAIL_LINES}", "--prefix"],
                kc, "(no logs available)",
            )
        pods = kubectl_json(["get", "pods", "-A"], kubeconfig=kc) or {}
        console.print("[bold]--- OOMKilled / CrashLoopBackOff pods ---[/bold]")
        problems = problem_pods(pods)
        for line in problems:
            console.print(f"[red]  {line}[/red]")
        if not problems:
            console.print("  No problematic pods found")
        console.print("[bold]--- Pod restart counts ---[/bold]")
        for name, count in sorted(restart_counts(pods).items()):
            console.print(f"  {name}: {count}")
    except Exception as err:
        logger.warning("post-benchmark diagnostics failed: %s", err)
