"""
Gatekeeper module - Request classification, token validation and policy storage
"""

from gatekeeper.classifier import Classifier, classify
from gatekeeper.config import GatekeeperSettings, load_gatekeeper_settings
from gatekeeper.config_loader import load_policy
from gatekeeper.exceptions import ConfigError, GatekeeperError, TokenVerificationError
from gatekeeper.interfaces import TokenVerifier
from gatekeeper.models import (
    Action,
    ChallengeMode,
    ChallengeType,
    Disposition,
    Outcome,
    Policy,
    Request,
    Rule,
    TokenState,
)
from gatekeeper.policy_store import PolicyStore
from gatekeeper.signals import SignalExtractor
from gatekeeper.token_validator import TokenValidator, token_label
from gatekeeper.verifiers import HmacTokenVerifier, HttpTokenVerifier

__all__ = [
    "Action",
    "ChallengeMode",
    "ChallengeType",
    "Classifier",
    "ConfigError",
    "Disposition",
    "GatekeeperError",
    "GatekeeperSettings",
    "HmacTokenVerifier",
    "HttpTokenVerifier",
    "Outcome",
    "Policy",
    "PolicyStore",
    "Request",
    "Rule",
    "SignalExtractor",
    "TokenState",
    "TokenValidator",
    "TokenVerificationError",
    "TokenVerifier",
    "classify",
    "load_gatekeeper_settings",
    "load_policy",
    "token_label",
]
