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

"""
cli.py - CLI for disposable-infrastructure runtime benchmarks.

Subcommands:
    run          Provision, benchmark both image variants, and tear down
    destroy      Tear down the resources recorded in a run state file
    show-config  Print the configuration resolved from the environment

Examples:
    # Benchmark the "next" workload with the defaults
    AWS_PROFILE=bench bench-manager run

    # Smaller pool, another workload
    AWS_PROFILE=bench bench-manager run --framework fastify --node-count 3

    # Clean up after a run whose teardown did not finish
    bench-manager destroy --state caged-benchmark-1700000000.state.json

For detailed usage information, run: bench-manager --help
"""

from __future__ import annotations

import logging
import sys

import typer

from bench_manager import console
from bench_manager.commands import destroy_cmd, run_cmd
from bench_manager.config import BenchConfig, display_config

app = typer.Typer(
    help="Benchmark a standard and a modified runtime image on disposable AWS infrastructure.",
    no_args_is_help=True,
)


@app.callback()
def _main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Initialize logging for all subcommands."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("botocore").setLevel(logging.WARNING)


@app.command("show-config")
def show_config() -> None:
    """Print the configuration resolved from the environment."""
    display_config(BenchConfig())


app.command("run")(run_cmd.run)
app.command("destroy")(destroy_cmd.destroy)


def main() -> None:
    try:
        app()
    except Exception as e:
        console.print(f"[red]\u274c {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
