"""
Tests for core gatekeeper models.
"""

import pytest

from gatekeeper.models import (
    Action,
    ChallengeMode,
    Disposition,
    MatchField,
    MatchNode,
    MatchOperator,
    Outcome,
    Policy,
    Request,
    Rule,
)
from gatekeeper.predicates import all_of, match, negate


def _rule(name, priority, action=Action.BLOCK, **kwargs):
    return Rule(
        name=name,
        priority=priority,
        predicate=all_of(
            match(MatchField.URI_PATH, name, MatchOperator.CONTAINS),
            negate(match(MatchField.METHOD, "OPTIONS")),
        ),
        action=action,
        **kwargs,
    )


class TestAction:
    """Test Action enum and precedence logic."""

    def test_terminal_actions(self):
        """Test that only CONTINUE is non-terminal."""
        assert Action.ALLOW.is_terminal
        assert Action.BLOCK.is_terminal
        assert Action.CHALLENGE.is_terminal
        assert Action.CAPTCHA.is_terminal
        assert not Action.CONTINUE.is_terminal

    def test_challenge_actions(self):
        assert Action.CHALLENGE.is_challenge
        assert Action.CAPTCHA.is_challenge
        assert not Action.BLOCK.is_challenge

    def test_most_restrictive_block_wins(self):
        """Test that BLOCK takes precedence over challenges."""
        actions = [Action.CHALLENGE, Action.BLOCK, Action.CAPTCHA]
        assert Action.most_restrictive(actions) == Action.BLOCK

    def test_most_restrictive_captcha_over_challenge(self):
        assert Action.most_restrictive([Action.CHALLENGE, Action.CAPTCHA]) == Action.CAPTCHA

    def test_most_restrictive_empty_list(self):
        assert Action.most_restrictive([]) is None


class TestChallengeMode:
    """Test policy-wide challenge mode rewriting."""

    def test_challenge_mode_keeps_actions(self):
        assert ChallengeMode.CHALLENGE.apply(Action.CHALLENGE) == Action.CHALLENGE
        assert ChallengeMode.CHALLENGE.apply(Action.CAPTCHA) == Action.CAPTCHA

    def test_captcha_mode_upgrades_challenges(self):
        assert ChallengeMode.CAPTCHA.apply(Action.CHALLENGE) == Action.CAPTCHA

    def test_none_mode_turns_challenges_into_continue(self):
        assert ChallengeMode.NONE.apply(Action.CHALLENGE) == Action.CONTINUE
        assert ChallengeMode.NONE.apply(Action.CAPTCHA) == Action.CONTINUE

    def test_block_and_allow_untouched(self):
        for mode in ChallengeMode:
            assert mode.apply(Action.BLOCK) == Action.BLOCK
            assert mode.apply(Action.ALLOW) == Action.ALLOW


class TestRequest:
    """Test Request normalisation."""

    def test_method_upper_cased(self):
        request = Request(method="get", path="/dev/hello")
        assert request.method == "GET"

    def test_header_lookup_case_insensitive(self):
        request = Request(method="GET", path="/", headers={"User-Agent": "Mozilla/5.0"})
        assert request.header("user-agent") == "Mozilla/5.0"
        assert request.header("USER-AGENT") == "Mozilla/5.0"
        assert request.header("x-missing") is None

    def test_multi_valued_headers_joined(self):
        request = Request(method="GET", path="/", headers={"Accept": ["text/html", "application/json"]})
        assert request.header("accept") == "text/html, application/json"

    def test_with_signals_returns_new_request(self):
        request = Request(method="GET", path="/", signals={"a"})
        annotated = request.with_signals(["b"])
        assert annotated.signals == frozenset({"a", "b"})
        assert request.signals == frozenset({"a"})

    def test_request_is_immutable(self):
        request = Request(method="GET", path="/")
        with pytest.raises(Exception):  # Pydantic frozen instance error
            request.path = "/other"


class TestRule:
    """Test Rule validation."""

    def test_overrides_must_tighten(self):
        with pytest.raises(Exception, match="override"):
            _rule("r", 0, overrides={"signal:x": Action.ALLOW})

    def test_can_restrict(self):
        assert _rule("r", 0, action=Action.BLOCK).can_restrict
        assert not _rule("r", 0, action=Action.CONTINUE).can_restrict
        assert _rule(
            "r", 0, action=Action.CONTINUE, overrides={"signal:x": Action.CHALLENGE}
        ).can_restrict

    def test_match_node_defaults(self):
        node = MatchNode(field=MatchField.URI_PATH, operator=MatchOperator.EXACT, value="/")
        assert node.kind == "MATCH"
        assert node.transform.value == "NONE"
        assert node.name is None


class TestPolicy:
    """Test Policy construction."""

    def test_rules_sorted_by_priority_stable(self):
        policy = Policy(rules=(_rule("c", 2), _rule("a", 1), _rule("b", 1)))
        assert [rule.name for rule in policy.rules] == ["a", "b", "c"]

    def test_default_action_must_be_allow_or_block(self):
        with pytest.raises(Exception, match="default_action"):
            Policy(default_action=Action.CHALLENGE)

    def test_defaults(self):
        policy = Policy()
        assert policy.default_action == Action.ALLOW
        assert policy.challenge_mode == ChallengeMode.CHALLENGE
        assert policy.rules == ()

    def test_get_rule(self):
        policy = Policy(rules=(_rule("a", 1),))
        assert policy.get_rule("a").priority == 1
        assert policy.get_rule("missing") is None


class TestDisposition:
    def test_minimal_disposition(self):
        disposition = Disposition(outcome=Outcome.ALLOW)
        assert disposition.matched_rule is None
        assert disposition.labels == frozenset()
        assert disposition.challenge_type is None
