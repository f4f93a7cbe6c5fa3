"""
Policy Store - Holds the active policy generation.

The store keeps one immutable Policy snapshot. Readers grab the reference
without locking; reload() builds and validates the next generation in full
before swapping the reference, so a request never sees a partial rule set.
"""

import threading
from typing import Optional, Tuple

from common.logging import get_logger
from gatekeeper.config_loader import PolicySource, load_policy, validate_rules
from gatekeeper.exceptions import ConfigError
from gatekeeper.models import Action, Policy, Rule

logger = get_logger(__name__)


class PolicyStore:
    """
    Owner of the current Policy snapshot.

    Either pass a source to load at construction, or an already-built Policy.
    """

    def __init__(
        self,
        source: Optional[PolicySource] = None,
        policy: Optional[Policy] = None,
    ):
        """
        Initialize the store.

        Args:
            source: Policy source (YAML path, mapping or rule list) to load now
                and to reuse on reload()
            policy: Pre-built policy; used when no source is given

        Raises:
            ConfigError: If the source is malformed (fatal to startup)
        """
        if source is not None and policy is not None:
            raise ValueError("Pass either a policy source or a Policy, not both")

        self._source = source
        self._lock = threading.RLock()
        self._generation = 0
        if source is not None:
            self._policy = load_policy(source)
        else:
            self._policy = policy or Policy()
            validate_rules(list(self._policy.rules))

    @property
    def policy(self) -> Policy:
        """The current snapshot. Safe to hold for the duration of one request."""
        return self._policy

    @property
    def rules(self) -> Tuple[Rule, ...]:
        return self._policy.rules

    @property
    def version(self) -> str:
        return self._policy.version

    @property
    def generation(self) -> int:
        """Number of successful reloads since the store was created."""
        return self._generation

    def default_action(self) -> Action:
        return self._policy.default_action

    def reload(self, source: Optional[PolicySource] = None) -> Policy:
        """
        Load a new policy generation and swap it in atomically.

        Args:
            source: New source; defaults to the source given at construction

        Returns:
            The newly active Policy

        Raises:
            ConfigError: If the new policy is invalid; the previous snapshot stays active
            ValueError: If there is no source to reload from
        """
        source = source if source is not None else self._source
        if source is None:
            raise ValueError("No policy source to reload from")

        # Built outside the lock: a reload signalled while this one is still
        # loading must not wait on it
        try:
            policy = load_policy(source)
        except (ConfigError, FileNotFoundError) as e:
            logger.error(
                "policy_reload_failed",
                active_version=self._policy.version,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        self._swap(policy, source)
        return policy

    def replace(self, policy: Policy) -> None:
        """
        Swap in a pre-built policy (tests, programmatic configuration).

        Raises:
            ConfigError: If the policy breaks a cross-rule invariant
        """
        validate_rules(list(policy.rules))
        self._swap(policy, self._source)

    def _swap(self, policy: Policy, source: Optional[PolicySource]) -> None:
        # Reentrant: a signal handler may reload while the main thread is in here
        with self._lock:
            previous = self._policy
            self._policy = policy
            self._source = source
            self._generation += 1
            generation = self._generation

        logger.info(
            "policy_reloaded",
            previous_version=previous.version,
            version=policy.version,
            generation=generation,
        )
