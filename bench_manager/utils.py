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

"""Utility functions for kubectl, git metadata, and command checks."""

from __future__ import annotations

import json
import subprocess
from pathlib import Path

import sh

from bench_manager.constants import KUBECTL_TIMEOUT_SECONDS
from bench_manager.errors import PreconditionError


def require_command(cmd: str) -> None:
    """Check if a command exists on the system PATH.

    Args:
        cmd: Name of the CLI command to check.

    Raises:
        PreconditionError: If the command is not found.
    """
    try:
        sh.which(cmd)
    except (sh.ErrorReturnCode, sh.CommandNotFound) as err:
        raise PreconditionError(f"Required command '{cmd}' not found. Please install it first.") from err


def git_commit_hash(cwd: Path | None = None) -> str:
    """Short HEAD commit of the repository at ``cwd``, or ``unknown``."""
    try:
        return str(sh.git("rev-parse", "--short", "HEAD", _cwd=str(cwd) if cwd else None)).strip()
    except (sh.ErrorReturnCode, sh.CommandNotFound):
        return "unknown"


def run_kubectl(
    args: list[str],
    kubeconfig: Path | None = None,
    timeout: int = KUBECTL_TIMEOUT_SECONDS,
    input: str | None = None,
) -> tuple[bool, str, str]:
    """Run a kubectl command via subprocess and return (success, stdout, stderr).

    Args:
        args: kubectl arguments (e.g. ``["get", "pods", "-n", "default"]``).
        kubeconfig: Kubeconfig file to use, or None for the ambient one.
        timeout: Maximum seconds to wait for the command to complete.
        input: Text written to kubectl's stdin (e.g. a manifest for ``apply -f -``).

    Returns:
        Tuple of (success, stdout, stderr).
    """
    cmd = ["kubectl"]
    if kubeconfig is not None:
        cmd += ["--kubeconfig", str(kubeconfig)]
    try:
        result = subprocess.run(
            [*cmd, *args],
            capture_output=True,
            text=True,
            timeout=timeout,
            input=input,
        )
        return result.returncode == 0, result.stdout, result.stderr
    except (subprocess.SubprocessError, OSError) as exc:
        return False, "", str(exc)


def kubectl_json(args: list[str], kubeconfig: Path | None = None) -> dict | None:
    """Run ``kubectl <args> -o json`` and parse the output.

    Returns:
        Parsed document, or None if kubectl failed or printed invalid JSON.
    """
    ok, stdout, _ = run_kubectl([*args, "-o", "json"], kubeconfig=kubeconfig)
    if not ok:
        return None
    try:
        return json.loads(stdout)
    except json.JSONDecodeError:
        return None
