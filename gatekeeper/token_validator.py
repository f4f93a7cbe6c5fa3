"""
Token Validator - Classifies the challenge token carried by a request.

The token may travel in a header (fetch wrappers that solved a challenge
set it explicitly) or in a cookie (set by the challenge page). Its
verification is delegated to a TokenVerifier; any verifier failure counts
as a rejection so an outage never opens the gate.
"""

from typing import Optional

from common.logging import get_logger
from gatekeeper.interfaces import TokenVerifier
from gatekeeper.models import Request, TokenState

logger = get_logger(__name__)

DEFAULT_TOKEN_HEADER = "x-aws-waf-token"
DEFAULT_TOKEN_COOKIE = "aws-waf-token"

TOKEN_ABSENT_LABEL = "token:absent"
TOKEN_REJECTED_LABEL = "token:rejected"
TOKEN_ACCEPTED_LABEL = "token:accepted"

_LABELS = {
    TokenState.ABSENT: TOKEN_ABSENT_LABEL,
    TokenState.REJECTED: TOKEN_REJECTED_LABEL,
    TokenState.ACCEPTED: TOKEN_ACCEPTED_LABEL,
}


def token_label(state: TokenState) -> str:
    """Signal label a rule predicate can match for the given token state."""
    return _LABELS[state]


class TokenValidator:
    """Finds and verifies the challenge token of a request."""

    def __init__(
        self,
        verifier: TokenVerifier,
        header_name: str = DEFAULT_TOKEN_HEADER,
        cookie_name: Optional[str] = DEFAULT_TOKEN_COOKIE,
    ):
        self._verifier = verifier
        self._header_name = header_name
        self._cookie_name = cookie_name

    @property
    def verifier(self) -> TokenVerifier:
        return self._verifier

    @property
    def header_name(self) -> str:
        return self._header_name

    @property
    def cookie_name(self) -> Optional[str]:
        return self._cookie_name

    def extract_token(self, request: Request) -> Optional[str]:
        """Header first, then cookie. Blank values count as missing."""
        token = request.header(self._header_name)
        if (token is None or not token.strip()) and self._cookie_name:
            token = request.cookies.get(self._cookie_name)
        if token is None or not token.strip():
            return None
        return token.strip()

    def validate(self, request: Request) -> TokenState:
        token = self.extract_token(request)
        if token is None:
            return TokenState.ABSENT

        try:
            accepted = self._verifier.verify(token)
        except Exception as e:
            # Fail closed
            logger.warning(
                "token_verifier_failed",
                verifier=self._verifier.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return TokenState.REJECTED

        return TokenState.ACCEPTED if accepted else TokenState.REJECTED

    def annotate(self, request: Request) -> Request:
        """Return the request with its token-state label attached."""
        return request.with_signals([token_label(self.validate(request))])
