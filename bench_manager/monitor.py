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

"""Load-test progress monitoring through the instance console output."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from botocore.exceptions import ClientError
from rich.panel import Panel

from bench_manager import console, logger
from bench_manager.aws import AwsClients
from bench_manager.constants import (
    ABORT_MARKER,
    BOOT_FAILURE_PATTERN,
    BOOT_NOISE_PATTERN,
    CLOUD_INIT_PREFIX,
    COMPLETION_MARKER,
    ECHOED_COMMAND_PREFIX,
    FATAL_PATTERN,
    MONITOR_POLL_INTERVAL_SECONDS,
    MONITOR_POLL_MAX_ATTEMPTS,
    START_MARKER,
    TERMINAL_INSTANCE_STATES,
)
from bench_manager.errors import LoadTestError, PollTimeoutError
from bench_manager.polling import poll


class Outcome(str, enum.Enum):
    RUNNING = "running"
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class Verdict:
    """Classification of one console snapshot.

    Attributes:
        outcome: Running, success, or failure.
        reason: Human-readable cause for a failure.
        window: Cleaned result window for a success.
    """

    outcome: Outcome
    reason: str = ""
    window: str = ""


# ============================================================================
# Transcript parsing
# ============================================================================

def strip_prefix(line: str) -> str:
    """Remove the ``[timestamp] cloud-init[pid]: `` console prefix."""
    return CLOUD_INIT_PREFIX.sub("", line)


def is_echoed_command(line: str) -> bool:
    return strip_prefix(line).startswith(ECHOED_COMMAND_PREFIX)


def clean_lines(lines: list[str]) -> list[str]:
    """Strip prefixes and drop echoed commands and interface chatter."""
    cleaned = []
    for line in lines:
        text = strip_prefix(line)
        if text.startswith(ECHOED_COMMAND_PREFIX) or BOOT_NOISE_PATTERN.search(text):
            continue
        cleaned.append(text)
    return cleaned


def _marker_lines(lines: list[str], marker: str) -> list[int]:
    return [i for i, line in enumerate(lines) if marker in line and not is_echoed_command(line)]


def _result_bounds(lines: list[str]) -> tuple[int, int | None]:
    """Index of the latest start marker (0 if none) and of the first completion at or after it."""
    starts = _marker_lines(lines, START_MARKER)
    start = starts[-1] if starts else 0
    ends = [i for i in _marker_lines(lines, COMPLETION_MARKER) if i >= start]
    return start, (ends[0] if ends else None)


def extract_window(output: str) -> str:
    """Cut the result window out of a console transcript.

    The window starts at the latest start marker and ends at the first
    completion marker after it. Without a start marker the window starts at
    the top; without a completion marker it runs to the end.

    Returns:
        The cleaned window.
    """
    lines = output.splitlines()
    start, end = _result_bounds(lines)
    if end is None:
        end = len(lines) - 1
    return "\n".join(clean_lines(lines[start:end + 1]))


def classify(output: str, instance_state: str | None) -> Verdict:
    """Classify a console snapshot and the instance's lifecycle state.

    Checks, in order: terminated instance, fatal pattern, boot failure,
    completion. Failure patterns only count up to the completion marker that
    closes the latest start marker, and never on echoed command lines.

    Args:
        output: Full console output collected so far.
        instance_state: EC2 instance state name, or None if unknown.

    Returns:
        The verdict.
    """
    if instance_state in TERMINAL_INSTANCE_STATES:
        return Verdict(Outcome.FAILURE, f"load-test instance is {instance_state}")

    lines = output.splitlines()
    _, end = _result_bounds(lines)
    before = lines[:end] if end is not None else lines
    live = [strip_prefix(line) for line in before if not is_echoed_command(line)]

    for line in live:
        match = FATAL_PATTERN.search(line)
        if match:
            return Verdict(Outcome.FAILURE, f"fatal output: {line.strip()}")
        if ABORT_MARKER in line:
            return Verdict(Outcome.FAILURE, line.strip())
    for line in live:
        if BOOT_FAILURE_PATTERN.search(line):
            return Verdict(Outcome.FAILURE, f"boot failure: {line.strip()}")

    if end is not None:
        return Verdict(Outcome.SUCCESS, window=extract_window(output))
    return Verdict(Outcome.RUNNING)


# ============================================================================
# Console transcript file
# ============================================================================

def write_transcript(path: Path, header: dict[str, str], output: str) -> None:
    """Rewrite ``path`` with a header block and the latest console output."""
    rule = "=" * 72
    lines = [rule, "LOAD TEST CONSOLE TRANSCRIPT"]
    lines += [f"{key}: {value}" for key, value in header.items()]
    lines += [rule, "", output]
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines))


# ============================================================================
# Monitor loop
# ============================================================================

class ConsoleMonitor:
    """Polls an instance's console output until the load test finishes.

    Attributes:
        transcript: Latest console output seen.
        polls: Number of console reads made.
    """

    def __init__(self, clients: AwsClients, instance_id: str, transcript_path: Path | None = None,
                 header: dict[str, str] | None = None) -> None:
        self.clients = clients
        self.instance_id = instance_id
        self.transcript_path = transcript_path
        self.header = {"Instance": instance_id, **(header or {})}
        self.transcript = ""
        self.polls = 0
        self._shown = 0

    def _instance_state(self) -> str | None:
        try:
            reservations = self.clients.ec2.describe_instances(InstanceIds=[self.instance_id])["Reservations"]
            return reservations[0]["Instances"][0]["State"]["Name"]
        except (ClientError, IndexError, KeyError) as err:
            logger.warning("unable to read state of %s: %s", self.instance_id, err)
            return None

    def _console_output(self) -> str:
        self.polls += 1
        try:
            return self.clients.ec2.get_console_output(InstanceId=self.instance_id, Latest=True).get("Output") or ""
        except ClientError as err:
            logger.warning("unable to read console of %s: %s", self.instance_id, err)
            return ""

    def _record(self, output: str) -> None:
        if not output or output == self.transcript:
            return
        self.transcript = output
        if self.transcript_path is not None:
            write_transcript(self.transcript_path, self.header, output)
        cleaned = clean_lines(output.splitlines())
        if len(cleaned) < self._shown:
            self._shown = 0
        fresh = cleaned[self._shown:]
        self._shown += len(fresh)
        for line in fresh:
            console.print(line, markup=False, highlight=False)

    def check(self) -> Verdict | None:
        """Take one snapshot. Returns None while the load test is still running."""
        state = self._instance_state()
        self._record(self._console_output())
        verdict = classify(self.transcript, state)
        if verdict.outcome is Outcome.RUNNING:
            return None
        return verdict

    def _dump(self) -> None:
        console.print(Panel.fit("Console output collected", style="bold red"))
        console.print(self.transcript or "(no console output)", markup=False, highlight=False)

    def run(self) -> str:
        """Poll until completion.

        Returns:
            The cleaned result window.

        Raises:
            LoadTestError: On a failure verdict or when the poll ceiling is reached.
        """
        console.print(Panel.fit(f"Monitoring load test on {self.instance_id}", style="bold blue"))
        console.print(
            f"[yellow]\u2139\ufe0f  Polling console output every {MONITOR_POLL_INTERVAL_SECONDS}s "
            f"(timeout {MONITOR_POLL_INTERVAL_SECONDS * MONITOR_POLL_MAX_ATTEMPTS}s)[/yellow]"
        )
        self.header.setdefault("Started", datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"))
        try:
            verdict = poll(
                self.check,
                interval=MONITOR_POLL_INTERVAL_SECONDS,
                max_attempts=MONITOR_POLL_MAX_ATTEMPTS,
                description=f"load test on {self.instance_id}",
            )
        except PollTimeoutError as err:
            self._dump()
            raise LoadTestError(f"Load test did not complete: {err}", self.transcript) from err
        if verdict.outcome is Outcome.FAILURE:
            console.print(f"[red]\u274c Load test failed: {verdict.reason}[/red]")
            self._dump()
            raise LoadTestError(f"Load test failed: {verdict.reason}", self.transcript)
        console.print("[green]\u2705 Benchmark completed[/green]")
        return verdict.window
