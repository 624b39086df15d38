"""Entry point for the AWS IAM login service."""
import logging
import os
import sys

# Configure logging to stdout for CloudWatch before anything else logs
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)],
    force=True
)
logger = logging.getLogger(__name__)

from aws_auth_payload.api_server import app  # noqa: E402
from aws_auth_payload.config import config  # noqa: E402
from aws_auth_payload.metrics import init_metrics  # noqa: E402
from aws_auth_payload.tracing import init_tracing  # noqa: E402

if __name__ == "__main__":
    import uvicorn

    init_metrics(service_name="aws-auth-payload")
    init_tracing(
        service_name="aws-auth-payload",
        otlp_endpoint=config.otel_endpoint or None,
        enable_console_export=config.otel_console_export,
    )

    port = int(os.getenv("PORT", "8080"))
    logger.info(f"Starting AWS IAM login service on 0.0.0.0:{port} ({config.environment})")
    if not config.server_id:
        logger.warning("AWS_AUTH_SERVER_ID is not set; proofs are not bound to this service")

    uvicorn.run(
        app,
        host="0.0.0.0",
        port=port,
        log_level="info",
        access_log=True
    )
