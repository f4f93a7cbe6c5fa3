"""
Token verifier interface definition.

The cryptographic/attestation check of a challenge token is delegated to an
external capability. Anything implementing this interface can be plugged
into the TokenValidator.
"""

from abc import ABC, abstractmethod

from gatekeeper.exceptions import TokenVerificationError


class TokenVerifier(ABC):
    """
    Abstract base class for challenge token verifiers.

    Verifiers answer one question: is this token genuine and still valid?
    They may raise TokenVerificationError (or anything else) when they
    cannot answer; the TokenValidator treats that as a rejection.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Return the verifier name used in logs.

        Returns:
            Verifier name (e.g., "hmac", "http")
        """
        pass

    @abstractmethod
    def verify(self, token: str) -> bool:
        """
        Check a token presented by a client.

        Args:
            token: The raw token string as found on the request

        Returns:
            True if the token is accepted, False if it is rejected

        Raises:
            TokenVerificationError: If no verdict could be reached
        """
        pass

    def issue(self) -> str:
        """
        Mint a token for a client that has passed a challenge.

        Only verifiers that own the signing key can do this; the default
        refuses.

        Raises:
            TokenVerificationError: If this verifier cannot issue tokens
        """
        raise TokenVerificationError(f"Verifier '{self.name}' cannot issue tokens")

    def close(self) -> None:
        """Release any resources held by the verifier. Default does nothing."""
        pass
