"""
Core data models for request classification.

Defines Request, the predicate tree, Rule, Policy and Disposition: the
contract between the edge layer, the Policy Store and the Classifier.
All models are frozen; a Policy is shared by every concurrent request.
"""

from enum import Enum
from typing import Annotated, Dict, FrozenSet, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Action(str, Enum):
    """
    What a rule does when it matches.

    CONTINUE records the rule's labels and moves on to the next rule; every
    other action is terminal.
    """

    ALLOW = "ALLOW"
    BLOCK = "BLOCK"
    CHALLENGE = "CHALLENGE"
    CAPTCHA = "CAPTCHA"
    CONTINUE = "CONTINUE"

    @property
    def is_terminal(self) -> bool:
        return self is not Action.CONTINUE

    @property
    def is_challenge(self) -> bool:
        return self in (Action.CHALLENGE, Action.CAPTCHA)

    @classmethod
    def get_precedence(cls, action: "Action") -> int:
        """
        Get precedence value for override comparison.
        Lower number = more restrictive.
        """
        precedence_map = {
            cls.BLOCK: 1,
            cls.CAPTCHA: 2,
            cls.CHALLENGE: 3,
            cls.ALLOW: 4,
            cls.CONTINUE: 5,
        }
        return precedence_map[action]

    @classmethod
    def most_restrictive(cls, actions: List["Action"]) -> Optional["Action"]:
        """Return the most restrictive of several actions, or None for an empty list."""
        if not actions:
            return None
        return min(actions, key=cls.get_precedence)


# Override mappings may only tighten a rule.
OVERRIDE_ACTIONS = frozenset({Action.BLOCK, Action.CHALLENGE, Action.CAPTCHA})


class Outcome(str, Enum):
    """The three dispositions a request can end in."""

    ALLOW = "ALLOW"
    BLOCK = "BLOCK"
    CHALLENGE = "CHALLENGE"


class ChallengeType(str, Enum):
    """How a CHALLENGE outcome is served to the client."""

    CHALLENGE = "challenge"  # silent proof-of-browser
    CAPTCHA = "captcha"  # interactive puzzle


class ChallengeMode(str, Enum):
    """
    Policy-wide treatment of challenge-type actions.

    challenge: CHALLENGE and CAPTCHA actions are served as written
    captcha: every challenge-type action is served as a CAPTCHA
    none: challenge-type actions are counted only (behave as CONTINUE)
    """

    CHALLENGE = "challenge"
    CAPTCHA = "captcha"
    NONE = "none"

    def apply(self, action: Action) -> Action:
        if not action.is_challenge:
            return action
        if self is ChallengeMode.NONE:
            return Action.CONTINUE
        if self is ChallengeMode.CAPTCHA:
            return Action.CAPTCHA
        return action


class TokenState(str, Enum):
    """Result of inspecting the challenge token carried by a request."""

    ABSENT = "ABSENT"
    REJECTED = "REJECTED"
    ACCEPTED = "ACCEPTED"


class MatchField(str, Enum):
    URI_PATH = "uri_path"
    METHOD = "method"
    HEADER = "header"
    LABEL = "label"


class Transform(str, Enum):
    NONE = "NONE"
    LOWERCASE = "LOWERCASE"

    def apply(self, value: str) -> str:
        return value.lower() if self is Transform.LOWERCASE else value


class MatchOperator(str, Enum):
    EXACT = "EXACT"
    CONTAINS = "CONTAINS"


class Request(BaseModel):
    """
    An inbound HTTP request as seen by the gatekeeper.

    Header names are stored lowercased; multi-valued headers are joined
    with ", " the way they would arrive on the wire. Signals are labels
    attached upstream (token state, user-agent heuristics).
    """

    method: str = Field(..., description="HTTP method, normalised to upper case")
    path: str = Field(..., description="URI path without the query string")
    headers: Dict[str, str] = Field(default_factory=dict, description="Header name -> value")
    cookies: Dict[str, str] = Field(default_factory=dict, description="Cookie name -> value")
    signals: FrozenSet[str] = Field(
        default_factory=frozenset,
        description="Labels attached by upstream inspection (e.g. 'token:absent')",
    )

    model_config = ConfigDict(frozen=True)

    @field_validator("method")
    @classmethod
    def _normalise_method(cls, value: str) -> str:
        return value.upper()

    @field_validator("headers", mode="before")
    @classmethod
    def _normalise_headers(cls, value):
        if value is None:
            return {}
        normalised = {}
        for name, header_value in dict(value).items():
            if isinstance(header_value, (list, tuple)):
                header_value = ", ".join(str(v) for v in header_value)
            normalised[str(name).lower()] = str(header_value)
        return normalised

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup; None when the header is absent."""
        return self.headers.get(name.lower())

    def with_signals(self, labels) -> "Request":
        """Return a copy of this request carrying the additional labels."""
        return self.model_copy(update={"signals": self.signals | frozenset(labels)})


class MatchNode(BaseModel):
    """Leaf predicate: compare one request field against a string."""

    kind: Literal["MATCH"] = "MATCH"
    field: MatchField
    name: Optional[str] = Field(None, description="Header name (only for field=header)")
    transform: Transform = Transform.NONE
    operator: MatchOperator
    value: str

    model_config = ConfigDict(frozen=True)


class AndNode(BaseModel):
    kind: Literal["AND"] = "AND"
    statements: Tuple["Predicate", ...] = Field(..., min_length=1)

    model_config = ConfigDict(frozen=True)


class OrNode(BaseModel):
    kind: Literal["OR"] = "OR"
    statements: Tuple["Predicate", ...] = Field(..., min_length=1)

    model_config = ConfigDict(frozen=True)


class NotNode(BaseModel):
    kind: Literal["NOT"] = "NOT"
    statement: "Predicate"

    model_config = ConfigDict(frozen=True)


Predicate = Annotated[
    Union[AndNode, OrNode, NotNode, MatchNode],
    Field(discriminator="kind"),
]

AndNode.model_rebuild()
OrNode.model_rebuild()
NotNode.model_rebuild()


class Rule(BaseModel):
    """
    One entry of the ordered rule list.

    overrides maps an upstream signal label to the action taken instead of
    `action` when that label is present and the predicate matched.
    """

    name: str = Field(..., min_length=1, description="Unique rule name")
    priority: int = Field(..., description="Lower evaluates first")
    predicate: Predicate
    action: Action
    overrides: Dict[str, Action] = Field(default_factory=dict)
    labels: FrozenSet[str] = Field(
        default_factory=frozenset,
        description="Labels added to the disposition when the rule matches",
    )

    model_config = ConfigDict(frozen=True)

    @field_validator("overrides")
    @classmethod
    def _overrides_only_tighten(cls, value: Dict[str, Action]) -> Dict[str, Action]:
        for signal, action in value.items():
            if action not in OVERRIDE_ACTIONS:
                raise ValueError(
                    f"override for signal '{signal}' must be one of "
                    f"{sorted(a.value for a in OVERRIDE_ACTIONS)}, got {action.value}"
                )
        return value

    @property
    def can_restrict(self) -> bool:
        """True if this rule can ever produce BLOCK or a challenge."""
        return self.action in OVERRIDE_ACTIONS or bool(self.overrides)


class Policy(BaseModel):
    """
    An immutable, versioned rule set.

    rules are stored in evaluation order: ascending priority, ties kept in
    declaration order.
    """

    version: str = Field("1", description="Policy generation identifier")
    default_action: Action = Field(Action.ALLOW, description="Used when no rule decides")
    challenge_mode: ChallengeMode = ChallengeMode.CHALLENGE
    rules: Tuple[Rule, ...] = Field(default_factory=tuple)

    model_config = ConfigDict(frozen=True)

    @field_validator("default_action")
    @classmethod
    def _default_is_allow_or_block(cls, value: Action) -> Action:
        if value not in (Action.ALLOW, Action.BLOCK):
            raise ValueError(f"default_action must be ALLOW or BLOCK, got {value.value}")
        return value

    @field_validator("rules")
    @classmethod
    def _evaluation_order(cls, value: Tuple[Rule, ...]) -> Tuple[Rule, ...]:
        # sorted() is stable: equal priorities keep declaration order
        return tuple(sorted(value, key=lambda rule: rule.priority))

    def get_rule(self, name: str) -> Optional[Rule]:
        return next((rule for rule in self.rules if rule.name == name), None)


class Disposition(BaseModel):
    """Final decision for one request."""

    outcome: Outcome
    matched_rule: Optional[str] = Field(
        None, description="Rule that decided the outcome; None when the default action applied"
    )
    labels: FrozenSet[str] = Field(default_factory=frozenset)
    challenge_type: Optional[ChallengeType] = Field(
        None, description="Set only for CHALLENGE outcomes"
    )
    policy_version: Optional[str] = None

    model_config = ConfigDict(frozen=True)
