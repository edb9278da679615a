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

"""Tests for bounded convergence polling."""

from unittest.mock import Mock

import pytest

from bench_manager.errors import PollTimeoutError, ProvisioningError
from bench_manager.polling import poll


class TestPoll:

    def test_returns_first_non_none_value(self, no_sleep):
        operation = Mock(side_effect=[None, None, "ACTIVE"])
        assert poll(operation, interval=15, max_attempts=60, description="cluster") == "ACTIVE"
        assert operation.call_count == 3
        assert no_sleep.call_count == 2
        no_sleep.assert_called_with(15)

    def test_falsy_values_count_as_converged(self):
        assert poll(Mock(return_value=0), interval=1, max_attempts=3, description="count") == 0

    def test_exhaustion_raises_timeout(self):
        operation = Mock(return_value=None)
        with pytest.raises(PollTimeoutError) as excinfo:
            poll(operation, interval=10, max_attempts=5, description="hostname")
        assert operation.call_count == 5
        assert excinfo.value.attempts == 5
        assert excinfo.value.description == "hostname"
        assert "50s" in str(excinfo.value)

    def test_timeout_is_a_provisioning_error(self):
        with pytest.raises(ProvisioningError):
            poll(Mock(return_value=None), interval=1, max_attempts=1, description="x")

    def test_exceptions_propagate_without_retry(self):
        operation = Mock(side_effect=[None, ProvisioningError("FAILED")])
        with pytest.raises(ProvisioningError, match="FAILED"):
            poll(operation, interval=1, max_attempts=10, description="cluster")
        assert operation.call_count == 2

    def test_progress_callback_every_n_attempts(self):
        seen = []
        operation = Mock(side_effect=[None] * 7 + ["done"])
        poll(operation, interval=1, max_attempts=10, description="pods",
             progress_every=3, on_progress=seen.append)
        assert seen == [3, 6]
