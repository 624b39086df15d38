"""
CloudWatch metrics for AWS IAM identity proofs.

Metrics are written to stdout as Embedded Metric Format (EMF) documents; the
CloudWatch agent (or Lambda/AgentCore log ingestion) extracts them, so no
PutMetricData calls are made from the request path.

Emitted metrics:
- PayloadSignedCount: Vault payloads and presigned URLs built by principals
- Verification*: verifier outcomes and end-to-end latency
- StsReplay*: status and latency of each replayed GetCallerIdentity call
"""

import json
import logging
import sys
import time
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import IO, Any, Optional

from .config import config

logger = logging.getLogger(__name__)


class MetricUnit(str, Enum):
    """CloudWatch metric units."""
    COUNT = "Count"
    MILLISECONDS = "Milliseconds"
    NONE = "None"


class AuthMetricName(str, Enum):
    """Metric names for identity proofs."""
    PAYLOAD_SIGNED_COUNT = "PayloadSignedCount"

    VERIFICATION_COUNT = "VerificationCount"
    VERIFICATION_ACCEPTED = "VerificationAccepted"
    VERIFICATION_REJECTED = "VerificationRejected"
    VERIFICATION_TIMEOUT = "VerificationTimeout"
    VERIFICATION_LATENCY = "VerificationLatency"

    STS_REPLAY_COUNT = "StsReplayCount"
    STS_REPLAY_LATENCY = "StsReplayLatency"


MetricValues = dict[AuthMetricName, tuple[float, MetricUnit]]


@dataclass
class MetricDimensions:
    """CloudWatch dimensions; unset optional dimensions are left out."""
    environment: str = field(default_factory=lambda: config.environment, metadata={"name": "Environment"})
    sts_host: Optional[str] = field(default=None, metadata={"name": "StsHost"})
    error_type: Optional[str] = field(default=None, metadata={"name": "ErrorType"})
    payload_kind: Optional[str] = field(default=None, metadata={"name": "PayloadKind"})

    def to_dict(self) -> dict[str, str]:
        return {
            f.metadata["name"]: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name)
        }


class MetricsEmitter:
    """
    Writes EMF documents, one JSON line per emit call.

    All metrics passed to a single ``emit_multiple`` call share one
    document and therefore one set of dimensions.
    """

    NAMESPACE = "AwsAuthPayload"

    def __init__(
        self,
        service_name: str = "aws-auth-payload",
        enabled: bool = True,
        stream: Optional[IO[str]] = None,
    ):
        """
        Args:
            service_name: Value of the ``service`` property on every document
            enabled: When False, metrics are dropped instead of written
            stream: Output stream (stdout at write time if None)
        """
        self.service_name = service_name
        self.enabled = enabled
        self.stream = stream

    def _document(
        self,
        metrics: MetricValues,
        dimensions: MetricDimensions,
        properties: dict[str, Any],
    ) -> dict[str, Any]:
        dims = dimensions.to_dict()
        document: dict[str, Any] = {
            "_aws": {
                "Timestamp": int(time.time() * 1000),
                "CloudWatchMetrics": [{
                    "Namespace": self.NAMESPACE,
                    "Dimensions": [list(dims)],
                    "Metrics": [{"Name": name.value, "Unit": unit.value} for name, (_, unit) in metrics.items()],
                }],
            },
            "service": self.service_name,
        }
        document.update(dims)
        document.update({name.value: value for name, (value, _) in metrics.items()})
        document.update(properties)
        return document

    def emit(
        self,
        metric_name: AuthMetricName,
        value: float,
        unit: MetricUnit = MetricUnit.COUNT,
        dimensions: Optional[MetricDimensions] = None,
        properties: Optional[dict[str, Any]] = None,
    ) -> None:
        """Emit a single metric."""
        self.emit_multiple({metric_name: (value, unit)}, dimensions, properties)

    def emit_multiple(
        self,
        metrics: MetricValues,
        dimensions: Optional[MetricDimensions] = None,
        properties: Optional[dict[str, Any]] = None,
    ) -> None:
        """Emit several metrics as one EMF document."""
        if not self.enabled or not metrics:
            return
        document = self._document(metrics, dimensions or MetricDimensions(), properties or {})
        stream = self.stream or sys.stdout
        stream.write(json.dumps(document) + "\n")
        stream.flush()

    def record_payload_signed(self, kind: str, host: str) -> None:
        """Count a payload (``kind`` "iam_payload") or presigned URL built for ``host``."""
        self.emit(
            AuthMetricName.PAYLOAD_SIGNED_COUNT,
            1,
            dimensions=MetricDimensions(sts_host=host or None, payload_kind=kind),
        )

    def record_verification(
        self,
        accepted: bool,
        latency_ms: float,
        sts_host: Optional[str] = None,
        error_type: Optional[str] = None,
        stage: Optional[str] = None,
    ) -> None:
        """
        Record the outcome of one verification attempt.

        Timeouts are counted both as rejected and under VerificationTimeout.

        Args:
            accepted: Whether an identity was established
            latency_ms: Wall time of the attempt in milliseconds
            sts_host: STS host named by the payload, if it got that far
            error_type: Error kind when rejected
            stage: Last verifier state reached
        """
        outcome = AuthMetricName.VERIFICATION_ACCEPTED if accepted else AuthMetricName.VERIFICATION_REJECTED
        metrics: MetricValues = {
            AuthMetricName.VERIFICATION_COUNT: (1, MetricUnit.COUNT),
            outcome: (1, MetricUnit.COUNT),
            AuthMetricName.VERIFICATION_LATENCY: (latency_ms, MetricUnit.MILLISECONDS),
        }
        if error_type == "VerificationTimeoutError":
            metrics[AuthMetricName.VERIFICATION_TIMEOUT] = (1, MetricUnit.COUNT)

        properties = {key: value for key, value in (("errorType", error_type), ("stage", stage)) if value}
        # Keep dimension cardinality bounded
        dims = MetricDimensions(sts_host=sts_host, error_type=error_type[:50] if error_type else None)
        self.emit_multiple(metrics, dims, properties)

    def record_sts_replay(self, status_code: int, latency_ms: float, sts_host: str) -> None:
        """Record one replayed STS call and the HTTP status it returned."""
        self.emit_multiple(
            {
                AuthMetricName.STS_REPLAY_COUNT: (1, MetricUnit.COUNT),
                AuthMetricName.STS_REPLAY_LATENCY: (latency_ms, MetricUnit.MILLISECONDS),
            },
            MetricDimensions(sts_host=sts_host),
            {"statusCode": status_code},
        )
        if status_code >= 500:
            logger.debug(f"STS {sts_host} returned {status_code} after {latency_ms:.1f}ms")


_metrics_emitter: Optional[MetricsEmitter] = None


def get_metrics_emitter() -> MetricsEmitter:
    """Get the process-wide metrics emitter, creating it on first use."""
    global _metrics_emitter
    if _metrics_emitter is None:
        _metrics_emitter = MetricsEmitter()
    return _metrics_emitter


def init_metrics(service_name: str = "aws-auth-payload", enabled: bool = True) -> MetricsEmitter:
    """Replace the process-wide emitter and return it."""
    global _metrics_emitter
    _metrics_emitter = MetricsEmitter(service_name, enabled=enabled)
    return _metrics_emitter
