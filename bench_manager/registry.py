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

"""Append-only registry of cloud resources touched by a run."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable

from bench_manager import logger


class ResourceKind(str, enum.Enum):
    NETWORK = "network"
    SUBNET = "subnet"
    GATEWAY = "gateway"
    ROUTE_TABLE = "route-table"
    SECURITY_GROUP = "security-group"
    IAM_ROLE = "iam-role"
    REGISTRY_REPO = "registry-repo"
    CLUSTER = "cluster"
    NODE_POOL = "node-pool"
    COMPUTE_INSTANCE = "compute-instance"
    LOAD_BALANCER = "load-balancer"


class HandleState(str, enum.Enum):
    REQUESTED = "requested"
    CREATING = "creating"
    ACTIVE = "active"
    DELETING = "deleting"
    ABSENT = "absent"


_TRANSITIONS: dict[HandleState, frozenset[HandleState]] = {
    HandleState.REQUESTED: frozenset({HandleState.CREATING, HandleState.ACTIVE, HandleState.ABSENT}),
    HandleState.CREATING: frozenset({HandleState.ACTIVE, HandleState.DELETING, HandleState.ABSENT}),
    HandleState.ACTIVE: frozenset({HandleState.DELETING, HandleState.ABSENT}),
    HandleState.DELETING: frozenset({HandleState.ABSENT, HandleState.ACTIVE}),
    HandleState.ABSENT: frozenset(),
}


@dataclass
class Handle:
    """A cloud resource known to this run.

    Attributes:
        kind: Resource kind.
        identifier: Provider id, ARN, or name.
        owned: True only if this run created the resource.
        state: Lifecycle state.
        attributes: Extra data teardown needs (e.g. attached policy ARNs).
    """

    kind: ResourceKind
    identifier: str
    owned: bool = True
    state: HandleState = HandleState.ACTIVE
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def live(self) -> bool:
        return self.state is not HandleState.ABSENT

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "identifier": self.identifier,
            "owned": self.owned,
            "state": self.state.value,
            "attributes": dict(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Handle:
        return cls(
            kind=ResourceKind(data["kind"]),
            identifier=data["identifier"],
            owned=bool(data.get("owned", True)),
            state=HandleState(data.get("state", HandleState.ACTIVE.value)),
            attributes=dict(data.get("attributes", {})),
        )


class ResourceRegistry:
    """In-memory, append-only record of every handle a run has registered.

    Handles are never removed; deleting a resource only moves its handle to
    ``ABSENT``. An optional listener is called after every mutation so the
    run context can persist itself.
    """

    def __init__(self, listener: Callable[[], None] | None = None) -> None:
        self._handles: list[Handle] = []
        self._listener = listener

    def set_listener(self, listener: Callable[[], None] | None) -> None:
        self._listener = listener

    def _changed(self) -> None:
        if self._listener is not None:
            self._listener()

    def register(
        self,
        kind: ResourceKind,
        identifier: str,
        *,
        owned: bool = True,
        state: HandleState = HandleState.ACTIVE,
        **attributes: Any,
    ) -> Handle:
        """Record a resource and return its handle.

        Registering an identifier already known for ``kind`` returns the
        existing handle unchanged.

        Args:
            kind: Resource kind.
            identifier: Provider id, ARN, or name.
            owned: False for resources discovered or reused rather than created.
            state: Initial state; ``CREATING`` for asynchronously created resources.
            **attributes: Extra data stored on the handle.

        Returns:
            The registered handle.
        """
        existing = self.find(kind, identifier)
        if existing is not None:
            return existing
        handle = Handle(kind=kind, identifier=identifier, owned=owned, state=state, attributes=dict(attributes))
        self._handles.append(handle)
        logger.debug("registered %s %s (owned=%s)", kind.value, identifier, owned)
        self._changed()
        return handle

    def adopt(self, handle: Handle) -> Handle:
        """Append a handle restored from a persisted run."""
        self._handles.append(handle)
        self._changed()
        return handle

    def _transition(self, handle: Handle, target: HandleState) -> None:
        if handle.state is target:
            return
        if target not in _TRANSITIONS[handle.state]:
            raise ValueError(
                f"invalid transition for {handle.kind.value} {handle.identifier}: "
                f"{handle.state.value} -> {target.value}"
            )
        handle.state = target
        self._changed()

    def mark_active(self, handle: Handle) -> None:
        self._transition(handle, HandleState.ACTIVE)

    def mark_deleting(self, handle: Handle) -> None:
        self._transition(handle, HandleState.DELETING)

    def mark_absent(self, handle: Handle) -> None:
        self._transition(handle, HandleState.ABSENT)

    def forget(self, handle: Handle) -> None:
        """Mark a handle absent without deleting anything."""
        if handle.live:
            logger.info("%s %s no longer exists", handle.kind.value, handle.identifier)
        self.mark_absent(handle)

    def find(self, kind: ResourceKind, identifier: str) -> Handle | None:
        for handle in self._handles:
            if handle.kind is kind and handle.identifier == identifier:
                return handle
        return None

    def of_kind(self, kind: ResourceKind) -> list[Handle]:
        return [h for h in self._handles if h.kind is kind]

    def all(self) -> list[Handle]:
        """Every handle ever registered, in creation order."""
        return list(self._handles)

    def __len__(self) -> int:
        return len(self._handles)
