"""
Gateway module - Edge layer routes and gatekeeper pipeline
"""

from gateway.api import create_app, to_gatekeeper_request
from gateway.models import ChallengeResponse, ErrorResponse, HelloResponse, TokenResponse
from gateway.orchestrator import GatewayGatekeeper, create_verifier

__all__ = [
    "create_app",
    "to_gatekeeper_request",
    "create_verifier",
    "GatewayGatekeeper",
    "ChallengeResponse",
    "ErrorResponse",
    "HelloResponse",
    "TokenResponse",
]
