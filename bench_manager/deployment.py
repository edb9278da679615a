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

"""Workload manifest rendering, pod readiness, and endpoint discovery."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from rich.panel import Panel

from bench_manager import console, logger
from bench_manager.constants import (
    EXPOSE_ANNOTATION,
    LB_HOSTNAME_POLL_INTERVAL_SECONDS,
    LB_HOSTNAME_POLL_MAX_ATTEMPTS,
    PLACEHOLDER_CAGED,
    PLACEHOLDER_STANDARD,
    PODS_READY_POLL_INTERVAL_SECONDS,
    PODS_READY_POLL_MAX_ATTEMPTS,
    STATUS_DUMP_EVERY,
    SYSTEM_NAMESPACES,
    VARIANT_CAGED,
    VARIANT_STANDARD,
    WORKLOAD_MANIFEST,
)
from bench_manager.context import RunContext, RunPhase
from bench_manager.errors import PollTimeoutError, ProvisioningError
from bench_manager.polling import poll
from bench_manager.utils import kubectl_json, run_kubectl


@dataclass
class PodSummary:
    """Readiness of the non-system pods.

    Attributes:
        total: Number of workload pods found.
        ready: Pods that are Running with every container ready.
        pending: ``namespace/name (phase, ready/desired)`` of the rest.
    """

    total: int = 0
    ready: int = 0
    pending: list[str] = field(default_factory=list)

    @property
    def all_ready(self) -> bool:
        return self.total > 0 and self.ready == self.total


@dataclass(frozen=True)
class ExposedService:
    namespace: str
    name: str


# ============================================================================
# Manifest
# ============================================================================

def render_manifest(template: str, images: dict[str, str]) -> str:
    """Substitute both image placeholders in ``template``.

    Raises:
        ProvisioningError: If an image reference is missing.
    """
    try:
        return (template
                .replace(PLACEHOLDER_STANDARD, images[VARIANT_STANDARD])
                .replace(PLACEHOLDER_CAGED, images[VARIANT_CAGED]))
    except KeyError as err:
        raise ProvisioningError(f"No published image for variant {err}") from err


def apply_manifest(manifest: str, kubeconfig: Path | None) -> None:
    """Apply ``manifest`` through ``kubectl apply -f -``.

    Raises:
        ProvisioningError: If kubectl rejects the manifest.
    """
    ok, stdout, stderr = run_kubectl(["apply", "-f", "-"], kubeconfig=kubeconfig, input=manifest)
    if not ok:
        raise ProvisioningError(f"kubectl apply failed: {stderr.strip()}")
    for line in stdout.splitlines():
        console.print(f"[green]  \u2713 {line}[/green]")


# ============================================================================
# Pod readiness
# ============================================================================

def summarize_pods(pods: dict) -> PodSummary:
    """Summarize the readiness of every pod outside the system namespaces."""
    summary = PodSummary()
    for pod in pods.get("items", []):
        meta = pod.get("metadata", {})
        if meta.get("namespace") in SYSTEM_NAMESPACES:
            continue
        status = pod.get("status", {})
        desired = len(pod.get("spec", {}).get("containers", []))
        ready = sum(1 for c in status.get("containerStatuses", []) if c.get("ready"))
        phase = status.get("phase", "Unknown")
        summary.total += 1
        if phase == "Running" and ready == desired:
            summary.ready += 1
        else:
            summary.pending.append(f"{meta.get('namespace')}/{meta.get('name')} ({phase}, {ready}/{desired})")
    return summary


def _dump_pods(kubeconfig: Path | None) -> None:
    _, stdout, stderr = run_kubectl(["get", "pods", "-A", "-o", "wide"], kubeconfig=kubeconfig)
    console.print(stdout or stderr)


def wait_for_pods(kubeconfig: Path | None) -> PodSummary:
    """Wait until every workload pod is Running and fully ready.

    Raises:
        PollTimeoutError: If the pods are not ready within the poll ceiling.
    """

    def _check() -> PodSummary | None:
        pods = kubectl_json(["get", "pods", "-A"], kubeconfig=kubeconfig)
        if pods is None:
            return None
        summary = summarize_pods(pods)
        if summary.total == 0:
            logger.debug("no workload pods yet")
            return None
        if not summary.all_ready:
            logger.debug("%d/%d pods ready", summary.ready, summary.total)
            return None
        return summary

    def _progress(attempt: int) -> None:
        console.print(f"[yellow]\u2139\ufe0f  Pods not ready yet ({attempt}/{PODS_READY_POLL_MAX_ATTEMPTS}):[/yellow]")
        _dump_pods(kubeconfig)

    try:
        summary = poll(
            _check,
            interval=PODS_READY_POLL_INTERVAL_SECONDS,
            max_attempts=PODS_READY_POLL_MAX_ATTEMPTS,
            description="workload pods to become ready",
            progress_every=STATUS_DUMP_EVERY,
            on_progress=_progress,
        )
    except PollTimeoutError:
        console.print("[red]\u274c Pods did not become ready. Full pod state:[/red]")
        _dump_pods(kubeconfig)
        _, described, _ = run_kubectl(["describe", "pods", "-A"], kubeconfig=kubeconfig)
        console.print(described)
        raise
    console.print(f"[green]  \u2713 All {summary.total} pods ready[/green]")
    return summary


# ============================================================================
# Endpoints
# ============================================================================

def find_exposed_services(kubeconfig: Path | None) -> list[ExposedService]:
    """LoadBalancer services carrying the expose annotation, across all namespaces.

    Raises:
        ProvisioningError: If the services cannot be listed or none is annotated.
    """
    services = kubectl_json(["get", "services", "-A"], kubeconfig=kubeconfig)
    if services is None:
        raise ProvisioningError("Unable to list services")
    exposed = []
    for svc in services.get("items", []):
        meta = svc.get("metadata", {})
        if svc.get("spec", {}).get("type") != "LoadBalancer":
            continue
        if (meta.get("annotations") or {}).get(EXPOSE_ANNOTATION) != "true":
            continue
        exposed.append(ExposedService(meta.get("namespace", "default"), meta["name"]))
    if not exposed:
        raise ProvisioningError(f"No LoadBalancer services found with annotation {EXPOSE_ANNOTATION}=true")
    return exposed


def wait_for_hostname(service: ExposedService, kubeconfig: Path | None) -> str:
    """Wait until ``service`` has an external load-balancer hostname.

    Raises:
        ProvisioningError: If no hostname is assigned within the poll ceiling.
    """

    def _hostname() -> str | None:
        doc = kubectl_json(["get", "service", service.name, "-n", service.namespace], kubeconfig=kubeconfig)
        if doc is None:
            return None
        for ingress in doc.get("status", {}).get("loadBalancer", {}).get("ingress", []) or []:
            if ingress.get("hostname") or ingress.get("ip"):
                return ingress.get("hostname") or ingress.get("ip")
        return None

    try:
        return poll(
            _hostname,
            interval=LB_HOSTNAME_POLL_INTERVAL_SECONDS,
            max_attempts=LB_HOSTNAME_POLL_MAX_ATTEMPTS,
            description=f"LoadBalancer hostname for {service.namespace}/{service.name}",
        )
    except PollTimeoutError as err:
        raise ProvisioningError(str(err)) from err


def discover_endpoints(ctx: RunContext) -> dict[str, str]:
    """Resolve every exposed service to its external hostname.

    Returns:
        Service name to hostname.
    """
    services = find_exposed_services(ctx.kubeconfig)
    console.print(f"[yellow]\u2139\ufe0f  Found {len(services)} exposed services, waiting for hostnames...[/yellow]")
    for service in services:
        hostname = wait_for_hostname(service, ctx.kubeconfig)
        ctx.endpoints[service.name] = hostname
        console.print(f"[green]  \u2713 {service.name} -> {hostname}[/green]")
    ctx.save()
    return dict(ctx.endpoints)


# ============================================================================
# Public API
# ============================================================================

def deploy_workload(ctx: RunContext, workload_dir: Path) -> dict[str, str]:
    """Render and apply the workload, wait for pods, and discover endpoints.

    Returns:
        Service name to external hostname.
    """
    console.print(Panel.fit("Deploying workload", style="bold blue"))
    template = (workload_dir / WORKLOAD_MANIFEST).read_text()
    apply_manifest(render_manifest(template, ctx.images), ctx.kubeconfig)
    wait_for_pods(ctx.kubeconfig)
    endpoints = discover_endpoints(ctx)
    ctx.advance(RunPhase.DEPLOYED)
    console.print("[green]\u2705 Workload deployed[/green]")
    return endpoints
