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

"""Run context: the single owner of a run's handles and discovered metadata."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from bench_manager import logger
from bench_manager.registry import Handle, ResourceKind, ResourceRegistry


class RunPhase(enum.IntEnum):
    CREATED = 0
    PRECHECKED = 1
    PROVISIONED = 2
    IMAGES_PUBLISHED = 3
    CLUSTER_READY = 4
    DEPLOYED = 5
    DISPATCHED = 6
    COMPLETED = 7


@dataclass
class RunContext:
    """Everything one benchmark run knows about the resources it touched.

    Attributes:
        cluster_name: Run identifier and resource name prefix.
        profile: AWS profile name.
        region: AWS region.
        account_id: AWS account id, once discovered.
        framework: Workload under test.
        registry: Handle registry.
        images: Variant name to pushed image URI.
        runtime_version: Version read back from the probe image.
        endpoints: Service name to external load-balancer hostname.
        kubeconfig: Path of the generated kubeconfig.
        state_path: Where the context persists itself, or None.
        phase: Furthest phase reached.
    """

    cluster_name: str
    profile: str | None = None
    region: str | None = None
    account_id: str | None = None
    framework: str | None = None
    registry: ResourceRegistry = field(default_factory=ResourceRegistry)
    images: dict[str, str] = field(default_factory=dict)
    runtime_version: str | None = None
    endpoints: dict[str, str] = field(default_factory=dict)
    kubeconfig: Path | None = None
    state_path: Path | None = None
    phase: RunPhase = RunPhase.CREATED

    def __post_init__(self) -> None:
        self.registry.set_listener(self.save)

    def advance(self, phase: RunPhase) -> None:
        """Move to ``phase``. Phases never move backwards.

        Raises:
            ValueError: If ``phase`` precedes the current phase.
        """
        if phase < self.phase:
            raise ValueError(f"cannot move from phase {self.phase.name} back to {phase.name}")
        self.phase = phase
        logger.info("run %s reached phase %s", self.cluster_name, phase.name)
        self.save()

    def handle(self, kind: ResourceKind) -> Handle | None:
        """Most recent live handle of ``kind``, or None."""
        for h in reversed(self.registry.of_kind(kind)):
            if h.live:
                return h
        return None

    def identifiers(self, kind: ResourceKind) -> list[str]:
        return [h.identifier for h in self.registry.of_kind(kind) if h.live]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        return {
            "cluster_name": self.cluster_name,
            "profile": self.profile,
            "region": self.region,
            "account_id": self.account_id,
            "framework": self.framework,
            "images": dict(self.images),
            "runtime_version": self.runtime_version,
            "endpoints": dict(self.endpoints),
            "kubeconfig": str(self.kubeconfig) if self.kubeconfig else None,
            "phase": self.phase.name,
            "handles": [h.to_dict() for h in self.registry.all()],
        }

    def save(self) -> None:
        """Write the context to ``state_path`` if one is set."""
        if self.state_path is None:
            return
        self.state_path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.state_path.with_suffix(".tmp")
        tmp.write_text(json.dumps(self.to_dict(), indent=2))
        tmp.replace(self.state_path)

    @classmethod
    def load(cls, path: Path) -> RunContext:
        """Restore a context previously written by ``save``.

        Args:
            path: State file path.

        Returns:
            The restored context, persisting back to ``path``.
        """
        data = json.loads(Path(path).read_text())
        ctx = cls(
            cluster_name=data["cluster_name"],
            profile=data.get("profile"),
            region=data.get("region"),
            account_id=data.get("account_id"),
            framework=data.get("framework"),
            images=dict(data.get("images", {})),
            runtime_version=data.get("runtime_version"),
            endpoints=dict(data.get("endpoints", {})),
            kubeconfig=Path(data["kubeconfig"]) if data.get("kubeconfig") else None,
            phase=RunPhase[data.get("phase", RunPhase.CREATED.name)],
        )
        for item in data.get("handles", []):
            ctx.registry.adopt(Handle.from_dict(item))
        ctx.state_path = Path(path)
        return ctx
