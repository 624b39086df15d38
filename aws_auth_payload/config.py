"""Configuration for AWS IAM identity proofs."""

import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

load_dotenv()


def _split_hosts(value: str) -> list[str]:
    return [host.strip().lower() for host in value.split(",") if host.strip()]


@dataclass
class AuthPayloadConfig:
    """Configuration for signing and verifying identity proofs."""

    # Principal side: STS region (empty means the global endpoint) and profile
    aws_region: str = ""
    aws_profile: str = ""

    # Header that binds a proof to one verifier, and this verifier's value
    server_id_header: str = "X-Vault-AWS-IAM-Server-ID"
    server_id: str = ""

    # Verifier policy
    allowed_sts_hosts: list[str] = field(default_factory=lambda: ["sts.amazonaws.com"])
    max_age_seconds: int = 300
    clock_skew_seconds: int = 60
    sts_timeout_seconds: float = 10.0

    environment: str = "development"

    # OpenTelemetry configuration
    otel_endpoint: str = ""
    otel_console_export: bool = False

    @classmethod
    def from_env(cls) -> "AuthPayloadConfig":
        """Load configuration from environment variables."""
        return cls(
            aws_region=os.getenv("AWS_REGION", ""),
            aws_profile=os.getenv("AWS_PROFILE", ""),
            server_id_header=os.getenv("AWS_AUTH_SERVER_ID_HEADER", cls.server_id_header),
            server_id=os.getenv("AWS_AUTH_SERVER_ID", ""),
            allowed_sts_hosts=_split_hosts(os.getenv("AWS_AUTH_ALLOWED_STS_HOSTS", "sts.amazonaws.com")),
            max_age_seconds=int(os.getenv("AWS_AUTH_MAX_AGE_SECONDS", str(cls.max_age_seconds))),
            clock_skew_seconds=int(os.getenv("AWS_AUTH_CLOCK_SKEW_SECONDS", str(cls.clock_skew_seconds))),
            sts_timeout_seconds=float(os.getenv("AWS_AUTH_STS_TIMEOUT_SECONDS", str(cls.sts_timeout_seconds))),
            environment=os.getenv("ENVIRONMENT", cls.environment),
            otel_endpoint=os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", ""),
            otel_console_export=os.getenv("OTEL_CONSOLE_EXPORT", "").lower() == "true",
        )


# Global config instance
config = AuthPayloadConfig.from_env()
