"""
Test mocks for the aws-auth-payload test suite.

Available Mocks:
- StsServiceMock: In-process STS GetCallerIdentity endpoint (an HttpTransport)
- StsServiceMockConfig: Response format, delay and status overrides
- MockPrincipal: A principal whose secret key the mock knows

Usage:
    from tests.mocks import StsServiceMock, StsServiceMockConfig

    mock = StsServiceMock(StsServiceMockConfig(delay_seconds=5))
"""

from .sts_mock import (
    MockPrincipal,
    RecordedCall,
    StsServiceMock,
    StsServiceMockConfig,
)

__all__ = [
    "MockPrincipal",
    "RecordedCall",
    "StsServiceMock",
    "StsServiceMockConfig",
]
