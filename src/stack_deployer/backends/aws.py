"""AWS adapter for the CloudAccount interface."""

from __future__ import annotations

from typing import Any, Callable, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError, ProfileNotFound

from ..config import CloudConfig
from ..errors import CloudAPIError
from ..utils.logging import get_logger
from .base import CloudAccount

logger = get_logger(__name__)

# Instances in these states are gone or going; they do not bill compute.
_LIVE_STATES = ["pending", "running", "stopping", "stopped", "shutting-down"]


class AwsCloudAccount(CloudAccount):
    """
    Talks to STS and EC2 through boto3.

    Credentials are resolved by boto3's default chain, so values written by
    `aws configure` and the AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY /
    AWS_DEFAULT_REGION environment variables are accepted alike.
    """

    def __init__(
        self,
        config: CloudConfig,
        session_factory: Optional[Callable[..., Any]] = None,
    ) -> None:
        self.config = config
        self._session_factory = session_factory or boto3.Session
        self._session: Optional[Any] = None

    def _get_session(self) -> Any:
        if self._session is None:
            try:
                self._session = self._session_factory(
                    profile_name=self.config.profile, region_name=self.config.region
                )
            except ProfileNotFound as exc:
                raise CloudAPIError(
                    f"AWS profile '{self.config.profile}' not found",
                    remediation="Run `aws configure --profile <name>` or unset AWS_PROFILE.",
                ) from exc
        return self._session

    def verify_identity(self) -> str:
        session = self._get_session()
        if not session.region_name:
            raise CloudAPIError(
                "no default region configured",
                remediation="Run `aws configure` or export AWS_DEFAULT_REGION=us-east-1.",
            )
        try:
            identity = session.client("sts").get_caller_identity()
        except NoCredentialsError as exc:
            raise CloudAPIError(
                "no AWS credentials found",
                remediation=_CREDENTIALS_HINT,
            ) from exc
        except (ClientError, BotoCoreError) as exc:
            raise CloudAPIError(
                f"credential check failed: {exc}",
                remediation=_CREDENTIALS_HINT,
            ) from exc
        arn = identity.get("Arn", "unknown")
        logger.info("☁️  AWS identity: %s (account %s)", arn, identity.get("Account", "?"))
        return arn

    def count_tagged_instances(self, name_pattern: str) -> int:
        filters = [
            {"Name": "tag:Name", "Values": [name_pattern]},
            {"Name": "instance-state-name", "Values": _LIVE_STATES},
        ]
        count = 0
        try:
            ec2 = self._get_session().client("ec2")
            paginator = ec2.get_paginator("describe_instances")
            for page in paginator.paginate(Filters=filters):
                for reservation in page.get("Reservations", []):
                    count += len(reservation.get("Instances", []))
        except (ClientError, BotoCoreError) as exc:
            raise CloudAPIError(
                f"describe_instances failed: {exc}",
                remediation="Check remaining instances in the AWS console.",
            ) from exc
        return count


_CREDENTIALS_HINT = (
    "Run `aws configure`, or export AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY "
    "and AWS_DEFAULT_REGION."
)
