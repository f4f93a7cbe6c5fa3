"""
Declarative policy builders shared by the gatekeeper tests.
"""

from pathlib import Path

DEFAULT_CONFIG = Path(__file__).resolve().parent.parent / "config" / "default.yaml"

TOKEN_RULE = "Block-Requests-With-Missing-Or-Rejected-Token-Label"
BOT_CONTROL_RULE = "AWS-AWSManagedRulesBotControlRuleSet"


def match_node(field, value, operator="EXACT", transform="NONE", name=None):
    """Declarative MATCH node, as it would appear in YAML."""
    node = {"kind": "MATCH", "field": field, "operator": operator, "value": value, "transform": transform}
    if name is not None:
        node["name"] = name
    return node


def not_options():
    return {"kind": "NOT", "statement": match_node("method", "OPTIONS")}


def scoped(*statements):
    """AND the statements with the OPTIONS exclusion every restrictive rule needs."""
    return {"kind": "AND", "statements": [*statements, not_options()]}
