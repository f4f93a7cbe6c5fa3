"""
FastAPI application for the Gateway.

Every request except the health check passes through the gatekeeper
middleware before it reaches a route.
"""

import uuid
from typing import Dict, List

import structlog.contextvars
from fastapi import FastAPI, Request as HTTPRequest
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gatekeeper.exceptions import TokenVerificationError
from gatekeeper.models import ChallengeType, Disposition, Outcome, Request
from gateway.models import ChallengeResponse, ErrorResponse, HelloResponse, TokenResponse
from gateway.orchestrator import GatewayGatekeeper

ACTION_HEADER = "x-gatekeeper-action"
CHALLENGE_PATH = "/challenge"
UNGUARDED_PATHS = frozenset({"/health", CHALLENGE_PATH})

# AWS WAF conventions: 202 for a silent challenge, 405 for a CAPTCHA
CHALLENGE_STATUS = {
    ChallengeType.CHALLENGE: 202,
    ChallengeType.CAPTCHA: 405,
}


def to_gatekeeper_request(http_request: HTTPRequest) -> Request:
    """Build the gatekeeper's view of an inbound HTTP request."""
    headers: Dict[str, List[str]] = {}
    for name, value in http_request.headers.items():
        headers.setdefault(name, []).append(value)
    return Request(
        method=http_request.method,
        path=http_request.url.path,
        headers=headers,
        cookies=dict(http_request.cookies),
    )


def _blocked(disposition: Disposition, trace_id: str) -> JSONResponse:
    body = ErrorResponse(
        error="Request blocked",
        error_code="REQUEST_BLOCKED",
        details={"matched_rule": disposition.matched_rule, "trace_id": trace_id},
    )
    return JSONResponse(
        status_code=403,
        content=body.model_dump(),
        headers={"X-Trace-Id": trace_id, ACTION_HEADER: "block"},
    )


def _challenged(disposition: Disposition, trace_id: str, token_header: str) -> JSONResponse:
    challenge_type = disposition.challenge_type or ChallengeType.CHALLENGE
    body = ChallengeResponse(
        challenge_type=challenge_type.value,
        message=f"Complete the challenge at {CHALLENGE_PATH} and retry the request with the issued token",
        matched_rule=disposition.matched_rule,
        token_header=token_header,
        challenge_path=CHALLENGE_PATH,
        trace_id=trace_id,
    )
    return JSONResponse(
        status_code=CHALLENGE_STATUS[challenge_type],
        content=body.model_dump(),
        headers={"X-Trace-Id": trace_id, ACTION_HEADER: challenge_type.value},
    )


def create_app(
    gatekeeper: GatewayGatekeeper,
    enable_cors: bool = True,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        gatekeeper: GatewayGatekeeper instance
        enable_cors: Whether to enable CORS middleware (the frontend is served from another origin)

    Returns:
        Configured FastAPI app
    """
    app = FastAPI(
        title="Bot Gatekeeper",
        description="Bot-challenge layer in front of the demo API",
        version="0.1.0",
    )
    app.state.gatekeeper = gatekeeper

    @app.middleware("http")
    async def gatekeeper_middleware(http_request: HTTPRequest, call_next):
        if http_request.url.path in UNGUARDED_PATHS:
            return await call_next(http_request)

        trace_id = str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(trace_id=trace_id)

        try:
            # Token verification may call out over the network
            _, disposition = await run_in_threadpool(
                gatekeeper.inspect, to_gatekeeper_request(http_request)
            )

            if disposition.outcome == Outcome.BLOCK:
                return _blocked(disposition, trace_id)
            if disposition.outcome == Outcome.CHALLENGE:
                return _challenged(disposition, trace_id, gatekeeper.token_header)

            response = await call_next(http_request)
            response.headers["X-Trace-Id"] = trace_id
            return response
        finally:
            structlog.contextvars.clear_contextvars()

    # Added last so it wraps the gatekeeper: preflights are answered here and
    # block/challenge responses still carry CORS headers the browser can read.
    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["X-Trace-Id", ACTION_HEADER],
        )

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        store = gatekeeper.store
        return {
            "status": "healthy",
            "policy_version": store.version,
            "policy_generation": store.generation,
        }

    @app.post(CHALLENGE_PATH, response_model=TokenResponse)
    async def challenge(http_request: HTTPRequest):
        """
        Issue a challenge token.

        The token is returned in the body for fetch wrappers that send it as
        a header, and set as a cookie for plain page loads.
        """
        trace_id = str(uuid.uuid4())
        request = to_gatekeeper_request(http_request)

        try:
            token = gatekeeper.issue_token(request)
        except TokenVerificationError as e:
            body = ErrorResponse(
                error=str(e),
                error_code="TOKEN_ISSUANCE_UNSUPPORTED",
                details={"trace_id": trace_id},
            )
            return JSONResponse(status_code=501, content=body.model_dump(), headers={"X-Trace-Id": trace_id})

        if token is None:
            body = ErrorResponse(
                error="Challenge failed",
                error_code="CHALLENGE_FAILED",
                details={"trace_id": trace_id},
            )
            return JSONResponse(status_code=403, content=body.model_dump(), headers={"X-Trace-Id": trace_id})

        body = TokenResponse(
            token=token,
            token_header=gatekeeper.token_header,
            token_cookie=gatekeeper.token_cookie,
            trace_id=trace_id,
        )
        response = JSONResponse(content=body.model_dump(), headers={"X-Trace-Id": trace_id})
        if gatekeeper.token_cookie:
            response.set_cookie(gatekeeper.token_cookie, token, samesite="lax")
        return response

    @app.get("/dev/hello", response_model=HelloResponse)
    async def hello():
        """Demo API route protected by the gatekeeper."""
        return HelloResponse()

    return app
