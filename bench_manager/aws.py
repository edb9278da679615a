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

"""boto3 session, client cache, and ClientError helpers."""

from __future__ import annotations

import boto3
from botocore.exceptions import ClientError, NoCredentialsError, ProfileNotFound

from bench_manager.constants import ABSENT_ERROR_CODES, DEPENDENCY_ERROR_CODES, TAG_USE_KEY, TAG_USE_VALUE
from bench_manager.errors import PreconditionError


class AwsClients:
    """Lazily created boto3 clients sharing one session.

    Attributes:
        session: The boto3 session.
        region: Effective region of the session.
    """

    def __init__(self, profile: str | None, region: str | None = None, session=None) -> None:
        if session is None:
            try:
                session = boto3.session.Session(profile_name=profile, region_name=region)
            except ProfileNotFound as err:
                raise PreconditionError(f"AWS profile '{profile}' not found") from err
        self.session = session
        self.region = region or session.region_name
        if not self.region:
            raise PreconditionError("No AWS region configured (set AWS_REGION or a profile region)")
        self._clients: dict[str, object] = {}

    def client(self, service: str):
        if service not in self._clients:
            self._clients[service] = self.session.client(service, region_name=self.region)
        return self._clients[service]

    @property
    def ec2(self):
        return self.client("ec2")

    @property
    def eks(self):
        return self.client("eks")

    @property
    def iam(self):
        return self.client("iam")

    @property
    def ecr(self):
        return self.client("ecr")

    @property
    def elbv2(self):
        return self.client("elbv2")

    def account_id(self) -> str:
        """Return the caller's account id.

        Raises:
            PreconditionError: If no usable credentials are configured.
        """
        try:
            return self.client("sts").get_caller_identity()["Account"]
        except (ClientError, NoCredentialsError) as err:
            raise PreconditionError(f"Unable to resolve AWS identity: {err}") from err


# ============================================================================
# Error classification
# ============================================================================

def error_code(err: BaseException) -> str:
    """Return the AWS error code of ``err``, or an empty string."""
    if isinstance(err, ClientError):
        return err.response.get("Error", {}).get("Code", "")
    return ""


def is_absent_error(err: BaseException) -> bool:
    """True if ``err`` says the resource does not exist."""
    return error_code(err) in ABSENT_ERROR_CODES


def is_dependency_error(err: BaseException) -> bool:
    """True if ``err`` is a transient "still referenced" failure."""
    return error_code(err) in DEPENDENCY_ERROR_CODES


def resource_tags(cluster_name: str, suffix: str) -> list[dict[str, str]]:
    """Standard tag set for a resource named ``<cluster>-<suffix>``."""
    return [
        {"Key": "Name", "Value": f"{cluster_name}-{suffix}"},
        {"Key": TAG_USE_KEY, "Value": TAG_USE_VALUE},
    ]


def tag_spec(resource_type: str, cluster_name: str, suffix: str) -> list[dict]:
    """EC2 ``TagSpecifications`` entry for a create call."""
    return [{"ResourceType": resource_type, "Tags": resource_tags(cluster_name, suffix)}]
