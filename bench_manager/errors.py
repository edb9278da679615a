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

"""Exception types for benchmark runs."""

from __future__ import annotations


class BenchmarkError(RuntimeError):
    """Base class for every fatal condition of a benchmark run."""

    exit_code = 1


class PreconditionError(BenchmarkError):
    """A required tool, file, or setting is missing. Raised before any resource exists."""


class ProvisioningError(BenchmarkError):
    """A create call failed or a resource did not converge."""


class PollTimeoutError(ProvisioningError):
    """A convergence poll exhausted its attempt ceiling.

    Attributes:
        description: What was being waited for.
        attempts: Number of attempts made.
        interval: Seconds slept between attempts.
    """

    def __init__(self, description: str, attempts: int, interval: float) -> None:
        super().__init__(
            f"Timed out waiting for {description} after {attempts} attempts "
            f"({attempts * interval:.0f}s)"
        )
        self.description = description
        self.attempts = attempts
        self.interval = interval


class LoadTestError(BenchmarkError):
    """The load-test instance failed, died, or timed out.

    Attributes:
        transcript: Console output collected before the failure.
    """

    def __init__(self, message: str, transcript: str = "") -> None:
        super().__init__(message)
        self.transcript = transcript


class RunInterrupted(BenchmarkError):
    """The process received SIGINT or SIGTERM."""

    exit_code = 130
