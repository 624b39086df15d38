"""
Pytest configuration and fixtures for aws-auth-payload tests.

This module provides shared fixtures for signing and verifying identity
proofs, including an in-process STS mock so tests never reach AWS.

Usage:
    # In your test file, fixtures are automatically available

    @pytest.mark.asyncio
    async def test_something(verifier, signed_payload):
        identity = await verifier.verify(signed_payload)
        assert identity.account_id == "123456789012"
"""

import datetime
import os

import pytest

from aws_auth_payload.auth import AWSCredentials
from aws_auth_payload.client import build_iam_payload
from aws_auth_payload.clock import FixedClock
from aws_auth_payload.metrics import MetricsEmitter, init_metrics
from aws_auth_payload.verifier import Verifier, VerifierConfig
from tests.mocks import StsServiceMock, StsServiceMockConfig

# AWS documentation example credentials
EXAMPLE_ACCESS_KEY = "AKIDEXAMPLE"
EXAMPLE_SECRET_KEY = "wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY"
EXAMPLE_ACCOUNT_ID = "123456789012"
EXAMPLE_ARN = "arn:aws:iam::123456789012:user/alice"

SERVER_ID = "vault.example.com"
SIGNING_TIME = datetime.datetime(2024, 1, 15, 12, 0, 0, tzinfo=datetime.timezone.utc)


# ============================================================================
# Credential and Clock Fixtures
# ============================================================================

@pytest.fixture
def credentials() -> AWSCredentials:
    """Long-term example credentials known to the STS mock."""
    return AWSCredentials(access_key=EXAMPLE_ACCESS_KEY, secret_key=EXAMPLE_SECRET_KEY)


@pytest.fixture
def session_credentials() -> AWSCredentials:
    """Temporary credentials with a session token."""
    return AWSCredentials(
        access_key="ASIAEXAMPLE",
        secret_key="session/secret+key",
        session_token="FwoGZXIvYXdzEBYaDKexampletoken==",
    )


@pytest.fixture
def clock() -> FixedClock:
    """Clock frozen at the signing time used across the tests."""
    return FixedClock(SIGNING_TIME)


# ============================================================================
# STS Mock Fixtures
# ============================================================================

@pytest.fixture
def sts_mock_config() -> StsServiceMockConfig:
    """
    Create an STS mock configuration.

    Override this fixture to customize the mock configuration.
    """
    return StsServiceMockConfig()


@pytest.fixture
def sts_mock(sts_mock_config: StsServiceMockConfig) -> StsServiceMock:
    """
    Create an STS mock that knows the example credentials.

    Principals:
    - AKIDEXAMPLE -> arn:aws:iam::123456789012:user/alice
    - ASIAEXAMPLE -> arn:aws:sts::123456789012:assumed-role/Deployer/ci
    """
    mock = StsServiceMock(config=sts_mock_config)
    mock.add_principal(
        access_key=EXAMPLE_ACCESS_KEY,
        secret_key=EXAMPLE_SECRET_KEY,
        account_id=EXAMPLE_ACCOUNT_ID,
        arn=EXAMPLE_ARN,
    )
    mock.add_principal(
        access_key="ASIAEXAMPLE",
        secret_key="session/secret+key",
        account_id=EXAMPLE_ACCOUNT_ID,
        arn="arn:aws:sts::123456789012:assumed-role/Deployer/ci",
        user_id="AROAEXAMPLE:ci",
    )
    return mock


# ============================================================================
# Verifier Fixtures
# ============================================================================

@pytest.fixture
def verifier_config() -> VerifierConfig:
    """Verifier policy bound to SERVER_ID on the global endpoint."""
    return VerifierConfig(required_binding_header=("X-Vault-AWS-IAM-Server-ID", SERVER_ID))


@pytest.fixture
def verifier(verifier_config: VerifierConfig, sts_mock: StsServiceMock, clock: FixedClock) -> Verifier:
    """Verifier wired to the STS mock and the fixed clock, with metrics muted."""
    return Verifier(
        config=verifier_config,
        transport=sts_mock,
        clock=clock,
        metrics=MetricsEmitter(enabled=False),
    )


@pytest.fixture
def signed_payload(credentials: AWSCredentials, clock: FixedClock):
    """A valid Vault login payload bound to SERVER_ID."""
    return build_iam_payload(
        credentials,
        additional_headers={"X-Vault-AWS-IAM-Server-ID": SERVER_ID},
        clock=clock,
    )


@pytest.fixture(autouse=True)
def quiet_metrics():
    """Keep the process metrics emitter from printing during tests."""
    init_metrics(enabled=False)
    yield
    init_metrics(enabled=False)


# ============================================================================
# Environment-based Fixtures
# ============================================================================

@pytest.fixture
def live_aws_credentials() -> AWSCredentials:
    """
    Real credentials for integration tests against AWS STS.

    Raises:
        pytest.skip: If AWS_ACCESS_KEY_ID is not set
    """
    if not os.environ.get("AWS_ACCESS_KEY_ID"):
        pytest.skip("AWS_ACCESS_KEY_ID not set - skipping integration tests")
    from aws_auth_payload.auth import get_aws_credentials
    return get_aws_credentials()


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (calls real AWS STS)",
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is passed."""
    if config.getoption("--run-integration", default=False):
        return

    skip_integration = pytest.mark.skip(
        reason="Integration tests skipped. Use --run-integration to run."
    )

    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests (requires AWS credentials)",
    )
