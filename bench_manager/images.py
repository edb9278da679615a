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

"""Image building, version probing, pushing, and registry verification."""

from __future__ import annotations

import base64
from datetime import datetime, timezone

import docker
from botocore.exceptions import ClientError
from rich.panel import Panel

from bench_manager import console, logger
from bench_manager.aws import AwsClients, error_code
from bench_manager.config import BenchConfig
from bench_manager.constants import (
    IMAGE_PLATFORM,
    IMAGE_VERIFY_POLL_INTERVAL_SECONDS,
    IMAGE_VERIFY_POLL_MAX_ATTEMPTS,
    VARIANT_CAGED,
    VARIANT_STANDARD,
    VERSION_PROBE_COMMAND,
)
from bench_manager.context import RunContext, RunPhase
from bench_manager.errors import PollTimeoutError, ProvisioningError
from bench_manager.polling import poll
from bench_manager.utils import git_commit_hash


def repository_uri(account_id: str, region: str, repo_name: str) -> str:
    """ECR repository URI for ``repo_name``."""
    return f"{account_id}.dkr.ecr.{region}.amazonaws.com/{repo_name}"


def ecr_login(docker_client: docker.DockerClient, clients: AwsClients) -> str:
    """Log the docker client into ECR.

    Returns:
        The registry endpoint logged into.
    """
    auth = clients.ecr.get_authorization_token()["authorizationData"][0]
    username, password = base64.b64decode(auth["authorizationToken"]).decode().split(":", 1)
    docker_client.login(username=username, password=password, registry=auth["proxyEndpoint"])
    console.print("[green]  \u2713 ECR login successful[/green]")
    return auth["proxyEndpoint"]


def build_variant(docker_client: docker.DockerClient, config: BenchConfig, base_image: str, tag: str):
    """Build the workload image on ``base_image`` for the benchmark platform.

    Returns:
        The built docker image.

    Raises:
        ProvisioningError: If the build fails.
    """
    buildargs = {
        "BASE_IMAGE": base_image,
        "COMMIT_HASH": git_commit_hash(config.benchmarks_dir),
        "BUILD_TIME": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
    }
    console.print(f"[yellow]\u2139\ufe0f  Building {tag} from {base_image}...[/yellow]")
    try:
        image, _ = docker_client.images.build(
            path=str(config.workload_dir),
            buildargs=buildargs,
            tag=tag,
            platform=IMAGE_PLATFORM,
            rm=True,
        )
    except (docker.errors.BuildError, docker.errors.APIError) as err:
        raise ProvisioningError(f"Docker build failed for {tag}: {err}") from err
    console.print(f"[green]  \u2713 Built {tag}[/green]")
    return image


def probe_version(docker_client: docker.DockerClient, image_ref: str) -> str:
    """Run ``image_ref`` once and read back its runtime version.

    Raises:
        ProvisioningError: If the container fails or prints nothing.
    """
    try:
        output = docker_client.containers.run(
            image_ref, VERSION_PROBE_COMMAND, remove=True, platform=IMAGE_PLATFORM,
        )
    except (docker.errors.ContainerError, docker.errors.APIError) as err:
        raise ProvisioningError(f"Version probe failed for {image_ref}: {err}") from err
    version = output.decode().strip() if isinstance(output, bytes) else str(output).strip()
    if not version:
        raise ProvisioningError(f"Version probe for {image_ref} printed nothing")
    return version


def push_tag(docker_client: docker.DockerClient, repo_uri: str, tag: str) -> None:
    """Push ``repo_uri:tag``, failing on any error reported in the stream.

    Raises:
        ProvisioningError: If the daemon reports an error.
    """
    try:
        for chunk in docker_client.images.push(repo_uri, tag=tag, stream=True, decode=True):
            if "error" in chunk:
                raise ProvisioningError(f"Docker push failed for {repo_uri}:{tag}: {chunk['error']}")
    except docker.errors.APIError as err:
        raise ProvisioningError(f"Docker push failed for {repo_uri}:{tag}: {err}") from err
    console.print(f"[green]  \u2713 Pushed {repo_uri}:{tag}[/green]")


def verify_pushed(clients: AwsClients, repo_name: str, tags: list[str]) -> None:
    """Wait until every tag in ``tags`` is visible in the repository.

    Raises:
        ProvisioningError: If a tag never shows up.
    """

    def _check() -> bool | None:
        try:
            found = clients.ecr.describe_images(
                repositoryName=repo_name, imageIds=[{"imageTag": t} for t in tags],
            )
        except ClientError as err:
            if error_code(err) == "ImageNotFoundException":
                return None
            raise
        present = {t for d in found.get("imageDetails", []) for t in d.get("imageTags", [])}
        missing = [t for t in tags if t not in present]
        if missing:
            logger.debug("images not yet visible: %s", missing)
            return None
        return True

    try:
        poll(
            _check,
            interval=IMAGE_VERIFY_POLL_INTERVAL_SECONDS,
            max_attempts=IMAGE_VERIFY_POLL_MAX_ATTEMPTS,
            description=f"images {tags} in {repo_name}",
        )
    except PollTimeoutError as err:
        raise ProvisioningError(f"Image verification failed: {err}") from err
    except ClientError as err:
        raise ProvisioningError(f"Image verification failed: {err}") from err


# ============================================================================
# Public API
# ============================================================================

def publish_images(ctx: RunContext, clients: AwsClients, config: BenchConfig,
                   docker_client: docker.DockerClient | None = None) -> dict[str, str]:
    """Build, version, push, and verify both image variants.

    Each variant is pushed as ``<variant>`` and ``<version>-<variant>``.

    Returns:
        Variant name to the image URI the manifests should use.

    Raises:
        ProvisioningError: If any build, push, or verification fails.
    """
    console.print(Panel.fit("Building and pushing images", style="bold blue"))
    repo_uri = repository_uri(ctx.account_id, clients.region, config.ecr_repo_name)
    own_client = docker_client is None
    if own_client:
        try:
            docker_client = docker.from_env()
        except docker.errors.DockerException as err:
            raise ProvisioningError(f"Failed to connect to Docker: {err}") from err

    try:
        try:
            ecr_login(docker_client, clients)
        except (ClientError, docker.errors.APIError) as err:
            raise ProvisioningError(f"ECR login failed: {err}") from err

        variants = {VARIANT_STANDARD: config.standard_base_image, VARIANT_CAGED: config.caged_base_image}
        built = {}
        for variant, base_image in variants.items():
            built[variant] = build_variant(docker_client, config, base_image, f"{repo_uri}:{variant}")
            if variant == VARIANT_STANDARD:
                ctx.runtime_version = probe_version(docker_client, f"{repo_uri}:{variant}")
                console.print(f"[green]  \u2713 Runtime version {ctx.runtime_version}[/green]")

        pushed_tags = []
        for variant, image in built.items():
            versioned = f"{ctx.runtime_version}-{variant}"
            image.tag(repo_uri, tag=versioned)
            for tag in (variant, versioned):
                push_tag(docker_client, repo_uri, tag)
                pushed_tags.append(tag)
    finally:
        if own_client:
            docker_client.close()

    verify_pushed(clients, config.ecr_repo_name, pushed_tags)
    ctx.images = {variant: f"{repo_uri}:{variant}" for variant in variants}
    ctx.advance(RunPhase.IMAGES_PUBLISHED)
    console.print("[green]\u2705 Both images pushed and verified[/green]")
    return dict(ctx.images)
