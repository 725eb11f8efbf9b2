"""Temporary AWS credentials handed to warehouses for COPY from S3."""

import logging
from typing import Any, Callable, Dict, NamedTuple, Optional

import boto3

from warehouse_loader.config import AWS_COPY_CONFIG
from warehouse_loader.core.model import Destination

logger = logging.getLogger(__name__)


class TemporaryCredentials(NamedTuple):
    access_key_id: str
    secret_access_key: str
    session_token: str


CredentialProvider = Callable[[Destination], TemporaryCredentials]


class StsCredentialProvider:
    """
    Session credentials from AWS STS. The destination's own access key is used
    when configured, otherwise the platform copy user.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, client_factory=None):
        self.config = config or AWS_COPY_CONFIG
        self._client_factory = client_factory or boto3.client

    def __call__(self, destination: Destination) -> TemporaryCredentials:
        access_key_id = destination.config.get('accessKeyID') or self.config["access_key_id"]
        secret_access_key = destination.config.get('accessKey') or self.config["secret_access_key"]

        client = self._client_factory(
            'sts',
            aws_access_key_id=access_key_id or None,
            aws_secret_access_key=secret_access_key or None,
        )
        response = client.get_session_token(DurationSeconds=self.config["session_duration"])
        credentials = response['Credentials']
        logger.debug(f"Issued temporary credentials for destination {destination.id}")
        return TemporaryCredentials(
            credentials['AccessKeyId'],
            credentials['SecretAccessKey'],
            credentials['SessionToken'],
        )
