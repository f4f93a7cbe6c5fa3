"""
Gateway Gatekeeper - The edge-layer pipeline in front of the API.

For every inbound request:
1. Attach user-agent signals
2. Attach the token-state label
3. Classify against the current policy generation
"""

from typing import Optional, Tuple

from common.logging import get_logger
from gatekeeper.classifier import Classifier
from gatekeeper.config import GatekeeperSettings
from gatekeeper.interfaces import TokenVerifier
from gatekeeper.models import Disposition, Request
from gatekeeper.policy_store import PolicyStore
from gatekeeper.signals import HTTP_LIBRARY, SignalExtractor
from gatekeeper.token_validator import TokenValidator
from gatekeeper.verifiers import HmacTokenVerifier, HttpTokenVerifier

logger = get_logger(__name__)


def create_verifier(settings: GatekeeperSettings) -> TokenVerifier:
    """Build the token verifier selected in the settings."""
    if settings.verifier == "http":
        return HttpTokenVerifier(
            url=settings.verifier_url,
            timeout=settings.verifier_timeout_seconds,
            api_key=settings.verifier_api_key,
        )
    return HmacTokenVerifier(
        secret=settings.token_secret,
        max_age_seconds=settings.token_max_age_seconds,
    )


class GatewayGatekeeper:
    """
    Runs the signal, token and classification stages for the gateway.

    The stages are pure with respect to each other; the only shared state is
    the PolicyStore's snapshot reference.
    """

    def __init__(
        self,
        classifier: Classifier,
        token_validator: TokenValidator,
        signal_extractor: Optional[SignalExtractor] = None,
    ):
        """
        Args:
            classifier: Classifier bound to the PolicyStore
            token_validator: Validator for the challenge token
            signal_extractor: User-agent heuristics (default signatures if None)
        """
        self._classifier = classifier
        self._token_validator = token_validator
        self._signal_extractor = signal_extractor or SignalExtractor()

    @classmethod
    def from_settings(cls, store: PolicyStore, settings: GatekeeperSettings) -> "GatewayGatekeeper":
        extractor = (
            SignalExtractor.from_patterns(settings.http_client_signatures)
            if settings.http_client_signatures
            else SignalExtractor()
        )
        validator = TokenValidator(
            create_verifier(settings),
            header_name=settings.token_header,
            cookie_name=settings.token_cookie,
        )
        logger.info(
            "gatekeeper_initialized",
            verifier=validator.verifier.name,
            token_header=settings.token_header,
            policy_version=store.version,
        )
        return cls(Classifier(store), validator, extractor)

    @property
    def token_header(self) -> str:
        return self._token_validator.header_name

    @property
    def token_cookie(self) -> Optional[str]:
        return self._token_validator.cookie_name

    @property
    def store(self) -> PolicyStore:
        return self._classifier.store

    def inspect(self, request: Request) -> Tuple[Request, Disposition]:
        """
        Annotate a request with upstream signals and classify it.

        Returns:
            The annotated request and its Disposition
        """
        annotated = self._signal_extractor.annotate(request)
        annotated = self._token_validator.annotate(annotated)
        return annotated, self._classifier.classify(annotated)

    def issue_token(self, request: Request) -> Optional[str]:
        """
        Mint a challenge token for the client behind a request.

        Clients identified as HTTP client libraries are refused.

        Returns:
            The token, or None when the client is refused

        Raises:
            TokenVerificationError: If the configured verifier cannot issue tokens
        """
        signals = self._signal_extractor.extract(request)
        if HTTP_LIBRARY in signals:
            logger.info("challenge_refused", path=request.path, signals=sorted(signals))
            return None

        token = self._token_validator.verifier.issue()
        logger.info("challenge_token_issued", verifier=self._token_validator.verifier.name)
        return token

    def close(self) -> None:
        self._token_validator.verifier.close()
