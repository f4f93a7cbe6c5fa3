"""
Shared fixtures for gatekeeper tests.
"""

import pytest

from gatekeeper.config_loader import load_policy
from tests.policy_helpers import DEFAULT_CONFIG


@pytest.fixture
def default_policy():
    """The shipped policy from config/default.yaml."""
    return load_policy(DEFAULT_CONFIG)
