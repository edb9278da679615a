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

"""Tests for the diagnostics dumps."""

from unittest.mock import MagicMock, patch

import requests

from bench_manager.diagnostics import (
    HEALTH_CHECK_REQUESTS,
    check_endpoint,
    pod_distribution,
    post_benchmark,
    pre_benchmark,
    problem_pods,
    restart_counts,
)

PODS = {"items": [
    {
        "metadata": {"name": "a", "namespace": "default"},
        "spec": {"nodeName": "node-1"},
        "status": {"containerStatuses": [
            {"restartCount": 2, "state": {"running": {}}, "lastState": {"terminated": {"reason": "OOMKilled"}}},
        ]},
    },
    {
        "metadata": {"name": "b", "namespace": "default"},
        "spec": {"nodeName": "node-1"},
        "status": {"containerStatuses": [
            {"restartCount": 0, "state": {"waiting": {"reason": "CrashLoopBackOff"}}, "lastState": {}},
        ]},
    },
    {
        "metadata": {"name": "c", "namespace": "default"},
        "spec": {},
        "status": {},
    },
]}


class TestPodAnalysis:

    def test_distribution(self):
        assert pod_distribution(PODS) == {"node-1": 2, "<unscheduled>": 1}

    def test_problem_pods(self):
        assert problem_pods(PODS) == ["default/a: OOMKilled", "default/b: CrashLoopBackOff"]

    def test_restart_counts(self):
        assert restart_counts(PODS) == {"default/a": 2, "default/b": 0, "default/c": 0}


class TestEndpointHealth:

    def test_all_requests_succeed(self):
        session = MagicMock()
        session.get.return_value = MagicMock(ok=True)
        ok, avg = check_endpoint("http://abc/", session)
        assert ok == HEALTH_CHECK_REQUESTS
        assert avg is not None
        assert session.get.call_count == HEALTH_CHECK_REQUESTS

    def test_failures_are_counted_not_raised(self):
        session = MagicMock()
        session.get.side_effect = [requests.ConnectionError("refused")] * 3 + [MagicMock(ok=False), MagicMock(ok=True)]
        ok, avg = check_endpoint("http://abc/", session)
        assert ok == 1
        assert avg is not None

    def test_no_success_has_no_latency(self):
        session = MagicMock()
        session.get.side_effect = requests.Timeout("slow")
        assert check_endpoint("http://abc/", session) == (0, None)


class TestDumps:

    @patch("bench_manager.diagnostics.endpoint_health")
    @patch("bench_manager.diagnostics.kubectl_json", return_value=PODS)
    @patch("bench_manager.diagnostics.run_kubectl", return_value=(True, "output", ""))
    def test_pre_benchmark_runs_every_section(self, mock_kubectl, _mock_json, mock_health, ctx):
        ctx.endpoints = {"next-node-caged": "nc.elb.amazonaws.com"}
        pre_benchmark(ctx)
        issued = [c.args[0][0] for c in mock_kubectl.call_args_list]
        assert {"cluster-info", "get", "top"} <= set(issued)
        mock_health.assert_called_once_with(ctx.endpoints)

    @patch("bench_manager.diagnostics.kubectl_json", return_value=PODS)
    @patch("bench_manager.diagnostics.run_kubectl", return_value=(True, "log line", ""))
    def test_post_benchmark_fetches_logs_per_service(self, mock_kubectl, _mock_json, ctx):
        ctx.endpoints = {"next-node-caged": "nc", "next-node-standard": "ns"}
        post_benchmark(ctx)
        log_calls = [c.args[0] for c in mock_kubectl.call_args_list if c.args[0][0] == "logs"]
        assert [args[2] for args in log_calls] == [
            "app.kubernetes.io/instance=next-node-caged",
            "app.kubernetes.io/instance=next-node-standard",
        ]

    @patch("bench_manager.diagnostics.run_kubectl", side_effect=RuntimeError("kubectl exploded"))
    def test_diagnostics_never_raise(self, _mock_kubectl, ctx):
        pre_benchmark(ctx)
        post_benchmark(ctx)
