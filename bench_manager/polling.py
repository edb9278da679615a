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

"""Bounded convergence polling."""

from __future__ import annotations

from typing import Callable, TypeVar

from tenacity import RetryCallState, RetryError, Retrying, retry_if_result, stop_after_attempt, wait_fixed

from bench_manager import logger
from bench_manager.errors import PollTimeoutError

T = TypeVar("T")


def poll(
    operation: Callable[[], T | None],
    *,
    interval: float,
    max_attempts: int,
    description: str,
    progress_every: int = 0,
    on_progress: Callable[[int], None] | None = None,
) -> T:
    """Call ``operation`` until it returns something other than None.

    Exceptions raised by ``operation`` are not retried; they propagate at once.

    Args:
        operation: Zero-argument callable; None means "not converged yet".
        interval: Seconds to sleep between attempts.
        max_attempts: Attempt ceiling.
        description: What is being waited for, used in logs and errors.
        progress_every: Call ``on_progress`` every N unconverged attempts (0 disables).
        on_progress: Callback receiving the attempt number.

    Returns:
        The first non-None value returned by ``operation``.

    Raises:
        PollTimeoutError: If ``max_attempts`` attempts all returned None.
    """

    def _before_sleep(state: RetryCallState) -> None:
        attempt = state.attempt_number
        logger.debug("waiting for %s (%d/%d)", description, attempt, max_attempts)
        if on_progress is not None and progress_every and attempt % progress_every == 0:
            on_progress(attempt)

    retrying = Retrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_fixed(interval),
        retry=retry_if_result(lambda result: result is None),
        before_sleep=_before_sleep,
    )
    try:
        return retrying(operation)
    except RetryError as err:
        raise PollTimeoutError(description, max_attempts, interval) from err
