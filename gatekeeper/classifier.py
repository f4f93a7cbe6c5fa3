"""
Classifier - Ordered rule evaluation.

classify() is a pure function of (Request, Policy). The Classifier class
binds it to a PolicyStore so every request is evaluated against exactly one
policy generation, and logs the decision.
"""

import time
from typing import List, Optional, Set

from common.logging import get_logger
from gatekeeper.models import (
    Action,
    ChallengeType,
    Disposition,
    Outcome,
    Policy,
    Request,
    Rule,
)
from gatekeeper.policy_store import PolicyStore
from gatekeeper.predicates import evaluate

logger = get_logger(__name__)

# Added when a BLOCK default is waived for a CORS preflight.
PREFLIGHT_EXEMPT_LABEL = "gatekeeper:preflight-exempt"


def effective_action(rule: Rule, request: Request, policy: Policy) -> Action:
    """
    Resolve the action a matched rule takes for this request.

    Override signals present on the request replace the base action (the
    most restrictive one wins when several are present), then the policy's
    challenge mode is applied.
    """
    overridden = Action.most_restrictive(
        [action for signal, action in rule.overrides.items() if signal in request.signals]
    )
    action = overridden if overridden is not None else rule.action
    return policy.challenge_mode.apply(action)


def _disposition(
    action: Action,
    rule_name: Optional[str],
    labels: Set[str],
    policy: Policy,
) -> Disposition:
    if action == Action.ALLOW:
        outcome, challenge_type = Outcome.ALLOW, None
    elif action == Action.BLOCK:
        outcome, challenge_type = Outcome.BLOCK, None
    elif action == Action.CAPTCHA:
        outcome, challenge_type = Outcome.CHALLENGE, ChallengeType.CAPTCHA
    else:
        outcome, challenge_type = Outcome.CHALLENGE, ChallengeType.CHALLENGE

    return Disposition(
        outcome=outcome,
        matched_rule=rule_name,
        labels=frozenset(labels),
        challenge_type=challenge_type,
        policy_version=policy.version,
    )


def classify(request: Request, policy: Policy) -> Disposition:
    """
    Classify a request against a policy.

    Rules are walked in evaluation order; the first matching rule whose
    effective action is terminal decides. Matching rules add their labels,
    which later rules can match on. No match falls back to the default action.

    Args:
        request: The inbound request, with upstream signals attached
        policy: The policy snapshot to evaluate against

    Returns:
        Disposition with the outcome, deciding rule and accumulated labels
    """
    labels = set(request.signals)
    current = request

    for rule in policy.rules:
        if not evaluate(rule.predicate, current):
            continue
        if rule.labels:
            # Labels from matched rules are visible to the rules after them
            labels.update(rule.labels)
            current = current.with_signals(rule.labels)
        action = effective_action(rule, current, policy)
        if action.is_terminal:
            return _disposition(action, rule.name, labels, policy)

    default_action = policy.default_action
    if default_action == Action.BLOCK and request.method == "OPTIONS":
        # Preflights always pass, even under a deny-by-default policy
        labels.add(PREFLIGHT_EXEMPT_LABEL)
        default_action = Action.ALLOW
    return _disposition(default_action, None, labels, policy)


class Classifier:
    """
    Classifies requests against the current policy of a PolicyStore.

    Reads the store's snapshot once per request so a concurrent reload can
    never mix two policy generations within one decision.
    """

    def __init__(self, store: PolicyStore):
        self._store = store

    @property
    def store(self) -> PolicyStore:
        return self._store

    def classify(self, request: Request) -> Disposition:
        start_time = time.time()
        policy = self._store.policy
        disposition = classify(request, policy)
        evaluation_time_ms = (time.time() - start_time) * 1000

        log = logger.info if disposition.outcome != Outcome.ALLOW else logger.debug
        log(
            "request_classified",
            method=request.method,
            path=request.path,
            outcome=disposition.outcome.value,
            matched_rule=disposition.matched_rule,
            challenge_type=disposition.challenge_type.value if disposition.challenge_type else None,
            labels=sorted(disposition.labels),
            policy_version=disposition.policy_version,
            evaluation_time_ms=evaluation_time_ms,
        )
        return disposition

    def classify_many(self, requests: List[Request]) -> List[Disposition]:
        """Classify a batch against a single policy generation."""
        policy = self._store.policy
        return [classify(request, policy) for request in requests]
