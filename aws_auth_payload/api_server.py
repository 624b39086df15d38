"""
HTTP login service that verifies AWS IAM identity proofs.

Clients POST the Vault-style IAM envelope to ``/login``; the service replays the
signed request to STS and answers with the caller's identity.

Usage:
    uvicorn aws_auth_payload.api_server:app --port 8080

    # Bind proofs to this service
    AWS_AUTH_SERVER_ID=login.example.com python main.py
"""

import logging
import os
from typing import Optional, Union

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .config import config
from .errors import (
    AwsAuthPayloadError,
    IdentityRejectedError,
    MalformedPayloadError,
    PolicyRejectedError,
    TransportError,
    VerificationCancelledError,
    VerificationTimeoutError,
)
from .verifier import Verifier, VerifierConfig

logger = logging.getLogger(__name__)

app = FastAPI(
    title="AWS IAM Login API",
    description="Verifies AWS IAM identity proofs by replaying them to STS",
    version="0.1.0",
)

# Error kind -> HTTP status
ERROR_STATUS = {
    MalformedPayloadError: 400,
    IdentityRejectedError: 401,
    PolicyRejectedError: 403,
    VerificationCancelledError: 499,
    TransportError: 502,
    VerificationTimeoutError: 504,
}

_verifier: Optional[Verifier] = None


def get_verifier() -> Verifier:
    """Get or create the process verifier, configured from the environment."""
    global _verifier
    if _verifier is None:
        _verifier = Verifier(VerifierConfig.from_settings(config))
    return _verifier


class LoginRequest(BaseModel):
    iam_http_request_method: str
    iam_request_url: str
    iam_request_body: str
    # Object of name -> [value], or base64-encoded JSON of the same
    iam_request_headers: Union[dict[str, Union[list[str], str]], str]


class LoginResponse(BaseModel):
    account_id: str
    arn: str
    canonical_arn: str
    user_id: str
    principal_type: str


def status_for(error: AwsAuthPayloadError) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return 500


@app.exception_handler(AwsAuthPayloadError)
async def auth_error_handler(request: Request, exc: AwsAuthPayloadError):
    body = {"error": exc.kind, "message": exc.message, "stage": exc.stage}
    if isinstance(exc, PolicyRejectedError):
        body["reason"] = exc.reason
    if isinstance(exc, IdentityRejectedError) and exc.error_code:
        body["sts_error_code"] = exc.error_code
    return JSONResponse(status_code=status_for(exc), content=body)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"error": "MalformedPayloadError", "message": "Invalid login payload", "stage": "received"},
    )


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


@app.post("/login", response_model=LoginResponse)
async def login(payload: LoginRequest, verifier: Verifier = Depends(get_verifier)):
    """Verify an identity proof and return the caller's identity."""
    identity = await verifier.verify(payload.model_dump())
    return LoginResponse(**identity.to_dict())


@app.get("/info")
async def get_info(verifier: Verifier = Depends(get_verifier)):
    """Get non-secret verifier configuration."""
    binding = verifier.config.required_binding_header
    return {
        "allowed_sts_hosts": sorted(verifier.config.allowed_hosts),
        "max_age_seconds": int(verifier.config.max_age.total_seconds()),
        "clock_skew_seconds": int(verifier.config.clock_skew_tolerance.total_seconds()),
        "binding_header": binding[0] if binding else None,
        "sts_timeout_seconds": verifier.config.timeout_seconds,
        "environment": config.environment,
    }


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("API_PORT", "8080"))
    uvicorn.run(app, host="0.0.0.0", port=port)
