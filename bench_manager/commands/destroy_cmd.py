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

"""Destroy subcommand: tear down the resources of an aborted run."""

from __future__ import annotations

import sys
from pathlib import Path

import typer

from bench_manager.orchestrator import destroy_from_state


def destroy(
    state: Path = typer.Option(..., "--state", exists=True, dir_okay=False, help="Run state file to tear down"),
) -> None:
    """Delete every owned resource recorded in a run state file."""
    sys.exit(destroy_from_state(state))
