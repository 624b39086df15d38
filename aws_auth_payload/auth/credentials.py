"""
AWS credential material for signing.

The package never stores or refreshes credentials: callers hand in an
``AWSCredentials`` value, or use ``get_aws_credentials`` to read one snapshot
from the default boto3 credential chain.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError

from ..errors import CredentialError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AWSCredentials:
    """AWS credentials for SigV4 signing."""
    access_key: str
    secret_key: str = field(repr=False)
    session_token: Optional[str] = field(default=None, repr=False)

    def validate(self) -> None:
        """
        Check that the material needed for signing is present.

        Raises:
            CredentialError: If the access key or secret key is missing
        """
        if not self.access_key or not self.access_key.strip():
            raise CredentialError("AWS access key ID is missing")
        if not self.secret_key:
            raise CredentialError("AWS secret access key is missing")
        if any(c in self.access_key for c in "/ \t\r\n"):
            raise CredentialError("AWS access key ID contains invalid characters")


def get_aws_credentials(profile_name: Optional[str] = None) -> AWSCredentials:
    """
    Get AWS credentials from the environment or profile.

    Uses the boto3 default chain: environment variables, shared config and
    credentials files, container and instance metadata.

    Args:
        profile_name: Optional AWS profile name to use

    Returns:
        AWSCredentials object with access key, secret key, and optional session token

    Raises:
        CredentialError: If credentials cannot be obtained
    """
    try:
        if profile_name:
            session = boto3.Session(profile_name=profile_name)
        else:
            session = boto3.Session()

        credentials = session.get_credentials()
        if credentials is None:
            raise CredentialError("No AWS credentials found")

        frozen_credentials = credentials.get_frozen_credentials()
    except BotoCoreError as e:
        raise CredentialError(f"Failed to get AWS credentials: {e}") from e

    logger.debug(f"Loaded AWS credentials for access key {frozen_credentials.access_key[:4]}...")
    return AWSCredentials(
        access_key=frozen_credentials.access_key,
        secret_key=frozen_credentials.secret_key,
        session_token=frozen_credentials.token,
    )
