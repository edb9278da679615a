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

"""Benchmark results: per-test measurement windows and their durable flush."""

from __future__ import annotations

import json
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from bench_manager.constants import RESULTS_FILE_TEMPLATE, TEST_HEADER_PATTERN

_DURATION_UNITS_MS = {"ns": 1e-6, "µs": 1e-3, "us": 1e-3, "ms": 1.0, "s": 1000.0, "m": 60000.0}
_DURATION = r"([\d.]+)(ns|µs|us|ms|s|m)"
_HTTP_REQS = re.compile(r"http_reqs\.*:\s*(\d+)\s+([\d.]+)/s")
_HTTP_FAILED = re.compile(r"http_req_failed\.*:\s*([\d.]+)%")
_HTTP_DURATION = re.compile(r"http_req_duration\.*:\s*(.*)$", re.MULTILINE)
_DURATION_STAT = re.compile(r"(avg|min|med|max|p\(90\)|p\(95\)|p\(99\))=" + _DURATION)
_TOTAL_REQUESTS = re.compile(r"Total Requests:\s*(\d+)")


def _to_ms(value: str, unit: str) -> float:
    return round(float(value) * _DURATION_UNITS_MS[unit], 3)


def parse_k6_summary(text: str) -> dict[str, float]:
    """Extract the headline numbers from a k6 end-of-test summary.

    Args:
        text: Raw output of one measurement.

    Returns:
        Any of ``requests``, ``request_rate``, ``failure_rate`` (percent) and
        ``latency_<stat>_ms`` that could be found; empty if none.
    """
    summary: dict[str, float] = {}
    reqs = _HTTP_REQS.search(text)
    total = _TOTAL_REQUESTS.search(text)
    if reqs:
        summary["requests"] = int(reqs.group(1))
        summary["request_rate"] = float(reqs.group(2))
    elif total:
        summary["requests"] = int(total.group(1))
    failed = _HTTP_FAILED.search(text)
    if failed:
        summary["failure_rate"] = float(failed.group(1))
    duration = _HTTP_DURATION.search(text)
    if duration:
        for stat, value, unit in _DURATION_STAT.findall(duration.group(1)):
            key = stat.replace("(", "").replace(")", "")
            summary[f"latency_{key}_ms"] = _to_ms(value, unit)
    return summary


@dataclass
class MeasurementWindow:
    """Output of one measurement.

    Attributes:
        variant: Target label (e.g. ``node-caged``).
        trial: 1-based trial index for this variant.
        name: Test header text.
        raw: Captured output of the window.
        summary: Parsed k6 summary.
    """

    variant: str
    trial: int
    name: str
    raw: str
    summary: dict[str, float] = field(default_factory=dict)


def split_windows(transcript: str) -> list[tuple[str, str]]:
    """Split a cleaned transcript at ``TEST <n>: <name>`` headers.

    Returns:
        ``(name, raw)`` pairs in order; text before the first header is dropped.
    """
    windows: list[tuple[str, list[str]]] = []
    for line in transcript.splitlines():
        match = TEST_HEADER_PATTERN.match(line.strip())
        if match:
            windows.append((match.group(2).strip(), [line]))
        elif windows:
            windows[-1][1].append(line)
    return [(name, "\n".join(lines)) for name, lines in windows]


class BenchmarkResult:
    """Ordered measurement windows of one run, flushed once."""

    def __init__(self, framework: str, cluster_name: str, images: dict[str, str] | None = None,
                 runtime_version: str | None = None) -> None:
        self.framework = framework
        self.cluster_name = cluster_name
        self.images = dict(images or {})
        self.runtime_version = runtime_version
        self.transcript = ""
        self.windows: list[MeasurementWindow] = []
        self.path: Path | None = None

    @property
    def flushed(self) -> bool:
        return self.path is not None

    def append(self, variant: str, name: str, raw: str) -> MeasurementWindow:
        """Add a measurement window.

        Raises:
            RuntimeError: If the result has already been flushed.
        """
        if self.flushed:
            raise RuntimeError("benchmark result already flushed")
        trial = 1 + sum(1 for w in self.windows if w.variant == variant)
        window = MeasurementWindow(variant, trial, name, raw, parse_k6_summary(raw))
        self.windows.append(window)
        return window

    def ingest(self, transcript: str) -> None:
        """Record the cleaned transcript and append one window per test header."""
        if self.flushed:
            raise RuntimeError("benchmark result already flushed")
        self.transcript = transcript
        for name, raw in split_windows(transcript):
            self.append(name.split()[0].lower(), name, raw)

    def flush(self, results_dir: Path, timestamp: str | None = None) -> Path:
        """Write the transcript and a JSON summary sidecar.

        Returns:
            Path of the written ``.log`` file.

        Raises:
            RuntimeError: If the result has already been flushed.
        """
        if self.flushed:
            raise RuntimeError("benchmark result already flushed")
        timestamp = timestamp or datetime.now().strftime("%Y%m%d_%H%M%S")
        results_dir.mkdir(parents=True, exist_ok=True)
        path = results_dir / RESULTS_FILE_TEMPLATE.format(framework=self.framework, timestamp=timestamp)
        path.write_text(self.transcript if self.transcript.endswith("\n") else self.transcript + "\n")
        sidecar = {
            "framework": self.framework,
            "cluster": self.cluster_name,
            "runtime_version": self.runtime_version,
            "images": self.images,
            "written_at": datetime.now(timezone.utc).isoformat(),
            "windows": [
                {k: v for k, v in asdict(w).items() if k != "raw"} for w in self.windows
            ],
        }
        path.with_suffix(".json").write_text(json.dumps(sidecar, indent=2))
        self.path = path
        return path
