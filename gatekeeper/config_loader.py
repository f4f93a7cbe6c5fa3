"""
Configuration loader for gatekeeper policies.

Loads the declarative rule list from YAML (or an already-parsed mapping or
list) and returns a validated, immutable Policy. Anything malformed or
ambiguous is reported as a ConfigError naming the offending rule.
"""

from collections import defaultdict
from pathlib import Path
from typing import Any, Dict, List, Mapping, Union

import yaml
from pydantic import ValidationError

from common.logging import get_logger
from gatekeeper.exceptions import ConfigError
from gatekeeper.models import (
    Action,
    AndNode,
    ChallengeMode,
    MatchField,
    MatchNode,
    MatchOperator,
    NotNode,
    OrNode,
    Policy,
    Predicate,
    Rule,
    Transform,
)
from gatekeeper.predicates import all_of, match, may_overlap, satisfiable

logger = get_logger(__name__)

PolicySource = Union[str, Path, Mapping[str, Any], List[Any]]

RULE_FIELDS = {"name", "priority", "predicate", "action", "overrides", "labels"}
POLICY_FIELDS = {"version", "default_action", "challenge_mode", "rules"}

PREFLIGHT = match(MatchField.METHOD, "OPTIONS")


def _enum(enum_cls, raw: Any, where: str, upper: bool = True):
    if not isinstance(raw, str):
        raise ConfigError(f"{where}: expected a string, got {type(raw).__name__}")
    value = raw.strip().upper() if upper else raw.strip().lower()
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ConfigError(f"{where}: unknown value '{raw}' (expected one of: {allowed})") from None


def _parse_predicate(data: Any, where: str) -> Predicate:
    """Recursively build a predicate tree from its declarative form."""
    if not isinstance(data, dict):
        raise ConfigError(f"{where}: predicate node must be a dictionary, got {type(data).__name__}")
    if "kind" not in data:
        raise ConfigError(f"{where}: predicate node is missing 'kind'")

    kind = str(data["kind"]).strip().upper()

    if kind in ("AND", "OR"):
        statements = data.get("statements")
        if not isinstance(statements, list) or not statements:
            raise ConfigError(f"{where}: {kind} node needs a non-empty 'statements' list")
        children = tuple(
            _parse_predicate(child, f"{where}.statements[{i}]")
            for i, child in enumerate(statements)
        )
        return AndNode(statements=children) if kind == "AND" else OrNode(statements=children)

    if kind == "NOT":
        if "statement" not in data:
            raise ConfigError(f"{where}: NOT node needs a 'statement'")
        return NotNode(statement=_parse_predicate(data["statement"], f"{where}.statement"))

    if kind == "MATCH":
        unknown = set(data) - {"kind", "field", "name", "transform", "operator", "value"}
        if unknown:
            raise ConfigError(f"{where}: unknown MATCH keys {sorted(unknown)}")
        for required in ("field", "operator", "value"):
            if required not in data:
                raise ConfigError(f"{where}: MATCH node is missing '{required}'")

        field = _enum(MatchField, data["field"], f"{where}.field", upper=False)
        name = data.get("name")
        if field == MatchField.HEADER:
            if not isinstance(name, str) or not name.strip():
                raise ConfigError(f"{where}: header MATCH needs a 'name'")
            name = name.strip().lower()
        elif name is not None:
            raise ConfigError(f"{where}: 'name' is only valid for header MATCH nodes")

        value = data["value"]
        if not isinstance(value, str):
            raise ConfigError(f"{where}.value: expected a string, got {type(value).__name__}")

        return MatchNode(
            field=field,
            name=name,
            transform=_enum(Transform, data.get("transform", "NONE"), f"{where}.transform"),
            operator=_enum(MatchOperator, data["operator"], f"{where}.operator"),
            value=value,
        )

    raise ConfigError(f"{where}: unknown predicate kind '{data['kind']}' (expected AND, OR, NOT, MATCH)")


def _parse_rule(data: Any, index: int) -> Rule:
    where = f"rules[{index}]"
    if not isinstance(data, dict):
        raise ConfigError(f"{where}: rule must be a dictionary, got {type(data).__name__}")

    unknown = set(data) - RULE_FIELDS
    if unknown:
        raise ConfigError(f"{where}: unknown rule keys {sorted(unknown)}")
    for required in ("name", "priority", "predicate", "action"):
        if required not in data:
            raise ConfigError(f"{where}: rule is missing required '{required}' field")

    name = data["name"]
    if not isinstance(name, str) or not name.strip():
        raise ConfigError(f"{where}: rule name must be a non-empty string")
    where = f"rule '{name}'"

    priority = data["priority"]
    # bool is an int subclass; reject it explicitly
    if isinstance(priority, bool) or not isinstance(priority, int):
        raise ConfigError(f"{where}: priority must be an integer, got {priority!r}")

    overrides_data = data.get("overrides") or {}
    if not isinstance(overrides_data, dict):
        raise ConfigError(f"{where}: 'overrides' must map signal labels to actions")
    overrides = {
        str(signal): _enum(Action, action, f"{where}.overrides['{signal}']")
        for signal, action in overrides_data.items()
    }

    labels = data.get("labels") or []
    if not isinstance(labels, list) or not all(isinstance(label, str) for label in labels):
        raise ConfigError(f"{where}: 'labels' must be a list of strings")

    try:
        return Rule(
            name=name.strip(),
            priority=priority,
            predicate=_parse_predicate(data["predicate"], f"{where}.predicate"),
            action=_enum(Action, data["action"], f"{where}.action"),
            overrides=overrides,
            labels=frozenset(labels),
        )
    except ValidationError as e:
        raise ConfigError(f"Invalid {where}: {e}") from e


def validate_rules(rules: List[Rule]) -> None:
    """
    Check the cross-rule invariants of a rule list.

    Raises:
        ConfigError: On duplicate names, rules that can challenge or block a
            CORS preflight, or equal-priority rules that can match the same request
    """
    seen = set()
    for rule in rules:
        if rule.name in seen:
            raise ConfigError(f"Duplicate rule name '{rule.name}'")
        seen.add(rule.name)

    try:
        for rule in rules:
            if rule.can_restrict and satisfiable(all_of(rule.predicate, PREFLIGHT)):
                raise ConfigError(
                    f"Rule '{rule.name}' can challenge or block OPTIONS requests; "
                    f"its predicate must exclude method OPTIONS"
                )

        by_priority: Dict[int, List[Rule]] = defaultdict(list)
        for rule in rules:
            by_priority[rule.priority].append(rule)

        for priority, group in by_priority.items():
            for i, first in enumerate(group):
                for second in group[i + 1:]:
                    if may_overlap(first.predicate, second.predicate):
                        raise ConfigError(
                            f"Rules '{first.name}' and '{second.name}' share priority {priority} "
                            f"and can match the same request"
                        )
    except ValueError as e:
        # Raised by the DNF expansion on oversized predicates
        raise ConfigError(f"Cannot analyse rule predicates: {e}") from e


def _read_yaml(path: Path) -> Any:
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")
    try:
        with open(path, "r") as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in config file {path}: {e}") from e


def load_policy(source: PolicySource) -> Policy:
    """
    Load and validate a policy.

    Args:
        source: Path to a YAML file with a 'policy' section, a mapping (either
            the whole config with a 'policy' key or the policy section itself),
            or a bare list of rule mappings

    Returns:
        Immutable Policy with rules in evaluation order

    Raises:
        FileNotFoundError: If a path is given and the file doesn't exist
        ConfigError: If the policy is malformed or ambiguous
    """
    data = _read_yaml(Path(source)) if isinstance(source, (str, Path)) else source

    if isinstance(data, list):
        data = {"rules": data}
    if not isinstance(data, Mapping):
        raise ConfigError(f"Policy must be a dictionary or a list of rules, got {type(data).__name__}")
    if "policy" in data:
        data = data["policy"]
        if not isinstance(data, Mapping):
            raise ConfigError(f"'policy' must be a dictionary, got {type(data).__name__}")

    unknown = set(data) - POLICY_FIELDS
    if unknown:
        raise ConfigError(f"Unknown policy keys {sorted(unknown)}")

    rules_data = data.get("rules", [])
    if not isinstance(rules_data, list):
        raise ConfigError(f"'rules' must be a list, got {type(rules_data).__name__}")

    rules = [_parse_rule(rule_data, i) for i, rule_data in enumerate(rules_data)]
    validate_rules(rules)

    try:
        policy = Policy(
            version=str(data.get("version", "1")),
            default_action=_enum(Action, data.get("default_action", "ALLOW"), "default_action"),
            challenge_mode=_enum(
                ChallengeMode, data.get("challenge_mode", "challenge"), "challenge_mode", upper=False
            ),
            rules=tuple(rules),
        )
    except ValidationError as e:
        raise ConfigError(f"Invalid policy: {e}") from e

    logger.info(
        "policy_loaded",
        version=policy.version,
        rules=[rule.name for rule in policy.rules],
        default_action=policy.default_action.value,
        challenge_mode=policy.challenge_mode.value,
    )
    return policy
