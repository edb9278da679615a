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

"""Tests for the image publisher."""

import base64
from unittest.mock import MagicMock, patch

import docker
import pytest

from bench_manager.constants import IMAGE_VERIFY_POLL_MAX_ATTEMPTS
from bench_manager.context import RunPhase
from bench_manager.errors import ProvisioningError
from bench_manager.images import ecr_login, probe_version, publish_images, push_tag, verify_pushed

from conftest import client_error

REPO = "123456789012.dkr.ecr.us-east-1.amazonaws.com/caged-benchmark"
TAGS = ["standard", "v25.1.0-standard", "caged", "v25.1.0-caged"]


def _details(*tags):
    return {"imageDetails": [{"imageTags": [t]} for t in tags]}


@pytest.fixture
def registry_clients(clients):
    token = base64.b64encode(b"AWS:secret-password").decode()
    clients.ecr.get_authorization_token.return_value = {"authorizationData": [
        {"authorizationToken": token, "proxyEndpoint": "https://123456789012.dkr.ecr.us-east-1.amazonaws.com"},
    ]}
    clients.ecr.describe_images.return_value = _details(*TAGS)
    return clients


@pytest.fixture
def docker_client():
    client = MagicMock()
    client.images.build.side_effect = [(MagicMock(name="standard"), []), (MagicMock(name="caged"), [])]
    client.containers.run.return_value = b"v25.1.0\n"
    client.images.push.side_effect = lambda *a, **kw: iter([{"status": "Pushed"}])
    return client


class TestPublishImages:

    @patch("bench_manager.images.git_commit_hash", return_value="abc1234")
    def test_builds_probes_pushes_and_verifies(self, _mock_git, ctx, registry_clients, config, docker_client):
        images = publish_images(ctx, registry_clients, config, docker_client=docker_client)

        assert images == {"standard": f"{REPO}:standard", "caged": f"{REPO}:caged"}
        assert ctx.images == images
        assert ctx.runtime_version == "v25.1.0"
        assert ctx.phase is RunPhase.IMAGES_PUBLISHED

        builds = docker_client.images.build.call_args_list
        assert [b.kwargs["buildargs"]["BASE_IMAGE"] for b in builds] == [
            config.standard_base_image, config.caged_base_image,
        ]
        assert all(b.kwargs["platform"] == "linux/amd64" for b in builds)
        assert builds[0].kwargs["buildargs"]["COMMIT_HASH"] == "abc1234"
        assert builds[0].kwargs["path"] == str(config.workload_dir)

        docker_client.containers.run.assert_called_once()
        assert docker_client.containers.run.call_args.args[0] == f"{REPO}:standard"

        pushed = [c.kwargs["tag"] for c in docker_client.images.push.call_args_list]
        assert pushed == TAGS
        docker_client.login.assert_called_once_with(
            username="AWS", password="secret-password",
            registry="https://123456789012.dkr.ecr.us-east-1.amazonaws.com",
        )
        docker_client.close.assert_not_called()

    @patch("bench_manager.images.git_commit_hash", return_value="abc1234")
    def test_build_failure_is_fatal(self, _mock_git, ctx, registry_clients, config, docker_client):
        docker_client.images.build.side_effect = docker.errors.BuildError("step 3 failed", [])
        with pytest.raises(ProvisioningError, match="Docker build failed"):
            publish_images(ctx, registry_clients, config, docker_client=docker_client)
        assert ctx.images == {}
        docker_client.images.push.assert_not_called()

    @patch("bench_manager.images.git_commit_hash", return_value="abc1234")
    @patch("bench_manager.images.docker.from_env")
    def test_owned_docker_client_is_closed(self, mock_from_env, _mock_git, ctx, registry_clients, config,
                                           docker_client):
        mock_from_env.return_value = docker_client
        publish_images(ctx, registry_clients, config)
        docker_client.close.assert_called_once()

    def test_docker_unavailable_is_fatal(self, ctx, registry_clients, config):
        with patch("bench_manager.images.docker.from_env", side_effect=docker.errors.DockerException("no socket")):
            with pytest.raises(ProvisioningError, match="Failed to connect to Docker"):
                publish_images(ctx, registry_clients, config)

    def test_ecr_login_failure_is_fatal(self, ctx, clients, config, docker_client):
        clients.ecr.get_authorization_token.side_effect = client_error("AccessDeniedException")
        with pytest.raises(ProvisioningError, match="ECR login failed"):
            publish_images(ctx, clients, config, docker_client=docker_client)


class TestPush:

    def test_error_in_stream_is_fatal(self, docker_client):
        docker_client.images.push.side_effect = None
        docker_client.images.push.return_value = iter([{"status": "Preparing"}, {"error": "denied: not authorized"}])
        with pytest.raises(ProvisioningError, match="denied: not authorized"):
            push_tag(docker_client, REPO, "caged")

    def test_login_decodes_token(self, registry_clients):
        docker_client = MagicMock()
        assert ecr_login(docker_client, registry_clients).startswith("https://")
        assert docker_client.login.call_args.kwargs["username"] == "AWS"


class TestProbe:

    def test_empty_output_is_fatal(self, docker_client):
        docker_client.containers.run.return_value = b"  \n"
        with pytest.raises(ProvisioningError, match="printed nothing"):
            probe_version(docker_client, f"{REPO}:standard")

    def test_container_error_is_fatal(self, docker_client):
        docker_client.containers.run.side_effect = docker.errors.APIError("daemon unavailable")
        with pytest.raises(ProvisioningError, match="Version probe failed"):
            probe_version(docker_client, f"{REPO}:standard")


class TestVerify:

    def test_waits_until_every_tag_is_visible(self, clients):
        clients.ecr.describe_images.side_effect = [
            client_error("ImageNotFoundException"),
            _details("standard", "caged"),
            _details(*TAGS),
        ]
        verify_pushed(clients, "caged-benchmark", TAGS)
        assert clients.ecr.describe_images.call_count == 3

    def test_missing_tag_after_ceiling_is_fatal(self, clients):
        clients.ecr.describe_images.return_value = _details("standard")
        with pytest.raises(ProvisioningError, match="Image verification failed"):
            verify_pushed(clients, "caged-benchmark", TAGS)
        assert clients.ecr.describe_images.call_count == IMAGE_VERIFY_POLL_MAX_ATTEMPTS

    def test_other_registry_errors_are_fatal_at_once(self, clients):
        clients.ecr.describe_images.side_effect = client_error("AccessDeniedException")
        with pytest.raises(ProvisioningError, match="AccessDeniedException"):
            verify_pushed(clients, "caged-benchmark", TAGS)
        assert clients.ecr.describe_images.call_count == 1
