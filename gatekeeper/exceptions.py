"""
Custom exceptions for the Gatekeeper.
"""


class GatekeeperError(Exception):
    """Base exception for all Gatekeeper errors."""
    pass


class ConfigError(GatekeeperError):
    """Policy or gatekeeper configuration is malformed or ambiguous. Fatal at startup."""
    pass


class TokenVerificationError(GatekeeperError):
    """The token verifier could not reach a verdict (service down, bad response)."""
    pass
