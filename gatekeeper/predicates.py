"""
Predicate evaluation and satisfiability analysis.

evaluate() is the hot path: a pure recursive walk over the AND/OR/NOT/MATCH
tree with left-to-right short-circuiting. The rest of the module is used at
load time only, to prove that two predicates can never be true for the same
request (equal-priority rules) or that a rule can never fire on a CORS
preflight.
"""

from collections import defaultdict
from itertools import product
from typing import Dict, List, Optional, Tuple

from gatekeeper.models import (
    AndNode,
    MatchField,
    MatchNode,
    MatchOperator,
    NotNode,
    OrNode,
    Predicate,
    Request,
    Transform,
)

# A literal is a MATCH leaf that must be true (False) or false (True).
MatchLiteral = Tuple[MatchNode, bool]
Conjunct = List[MatchLiteral]

# Guard against pathological rule trees blowing up during the load-time check.
MAX_DNF_TERMS = 4096


def match(
    field: MatchField,
    value: str,
    operator: MatchOperator = MatchOperator.EXACT,
    transform: Transform = Transform.NONE,
    name: Optional[str] = None,
) -> MatchNode:
    return MatchNode(field=field, name=name, transform=transform, operator=operator, value=value)


def all_of(*statements: Predicate) -> AndNode:
    return AndNode(statements=statements)


def any_of(*statements: Predicate) -> OrNode:
    return OrNode(statements=statements)


def negate(statement: Predicate) -> NotNode:
    return NotNode(statement=statement)


def _test(node: MatchNode, value: str) -> bool:
    candidate = node.transform.apply(value)
    if node.operator == MatchOperator.EXACT:
        return candidate == node.value
    return node.value in candidate


def _match(node: MatchNode, request: Request) -> bool:
    if node.field == MatchField.URI_PATH:
        return _test(node, request.path)
    if node.field == MatchField.METHOD:
        return _test(node, request.method)
    if node.field == MatchField.HEADER:
        value = request.header(node.name)
        # A missing header never matches
        return value is not None and _test(node, value)
    # Sorted so evaluation order does not depend on set iteration order
    return any(_test(node, label) for label in sorted(request.signals))


def evaluate(predicate: Predicate, request: Request) -> bool:
    """Evaluate a predicate tree against a request."""
    if isinstance(predicate, MatchNode):
        return _match(predicate, request)
    if isinstance(predicate, AndNode):
        return all(evaluate(statement, request) for statement in predicate.statements)
    if isinstance(predicate, OrNode):
        return any(evaluate(statement, request) for statement in predicate.statements)
    if isinstance(predicate, NotNode):
        return not evaluate(predicate.statement, request)
    raise TypeError(f"Unknown predicate node: {type(predicate).__name__}")


def to_dnf(predicate: Predicate, negated: bool = False) -> List[Conjunct]:
    """
    Rewrite a predicate as a disjunction of conjunctions of literals.

    NOT is pushed down to the leaves with De Morgan's laws.

    Raises:
        ValueError: If the expansion exceeds MAX_DNF_TERMS
    """
    if isinstance(predicate, MatchNode):
        return [[(predicate, negated)]]
    if isinstance(predicate, NotNode):
        return to_dnf(predicate.statement, not negated)

    children = [to_dnf(statement, negated) for statement in predicate.statements]
    conjunctive = isinstance(predicate, AndNode) != negated

    if not conjunctive:
        terms = [term for child in children for term in child]
    else:
        size = 1
        for child in children:
            size *= len(child)
            if size > MAX_DNF_TERMS:
                break
        if size > MAX_DNF_TERMS:
            raise ValueError(f"predicate expands to more than {MAX_DNF_TERMS} terms")
        terms = [
            [literal for term in combination for literal in term]
            for combination in product(*children)
        ]

    if len(terms) > MAX_DNF_TERMS:
        raise ValueError(f"predicate expands to more than {MAX_DNF_TERMS} terms")
    return terms


def _implies(given: MatchNode, other: MatchNode) -> Optional[bool]:
    """
    Assuming a value satisfies `given`, decide whether it satisfies `other`.

    Returns True/False when provable, None when it depends on the value.
    """
    if given.operator == MatchOperator.EXACT:
        if given.transform == Transform.NONE:
            # The value is fully known
            return _test(other, given.value)
        # Only the lowercased value is known
        if other.transform == Transform.LOWERCASE:
            return _test(other, given.value)
        if other.operator == MatchOperator.EXACT:
            return False if other.value.lower() != given.value else None
        return False if other.value.lower() not in given.value else None

    # given is CONTAINS: the (transformed) value holds given.value somewhere
    if other.operator != MatchOperator.CONTAINS:
        return None
    if other.transform == given.transform:
        known = given.value
    elif other.transform == Transform.LOWERCASE:
        known = given.value.lower()
    else:
        return None
    return True if other.value in known else None


def _never_true(node: MatchNode) -> bool:
    # Lowercased input can never equal or contain an upper-case character
    return node.transform == Transform.LOWERCASE and node.value != node.value.lower()


def _group_key(node: MatchNode) -> Tuple[MatchField, str]:
    if node.field == MatchField.HEADER:
        return node.field, (node.name or "").lower()
    return node.field, ""


def _single_valued_consistent(literals: Conjunct, always_present: bool) -> bool:
    positives = [node for node, negated in literals if not negated]
    negatives = [node for node, negated in literals if negated]

    if any(_never_true(node) for node in positives):
        return False
    if not positives:
        if not always_present:
            return True  # a missing header falsifies every MATCH
        # NOT(contains "") can never hold for a value that is present
        return not any(
            n.operator == MatchOperator.CONTAINS and n.value == "" for n in negatives
        )

    for given in positives:
        for other in positives:
            if other is not given and _implies(given, other) is False:
                return False
        for other in negatives:
            if _implies(given, other) is True:
                return False
    return True


def _label_consistent(literals: Conjunct) -> bool:
    positives = [node for node, negated in literals if not negated]
    negatives = [node for node, negated in literals if negated]

    if any(_never_true(node) for node in positives):
        return False
    # Each positive literal needs a witness label that no negative literal matches;
    # positive literals never conflict with each other since a request can carry many labels.
    for given in positives:
        for other in negatives:
            if _implies(given, other) is True:
                return False
    return True


def conjunct_satisfiable(literals: Conjunct) -> bool:
    """
    Conservative satisfiability test for one conjunction.

    Only returns False when the literals provably contradict each other.
    """
    groups: Dict[Tuple[MatchField, str], Conjunct] = defaultdict(list)
    for literal in literals:
        groups[_group_key(literal[0])].append(literal)

    for (field, _), group in groups.items():
        if field == MatchField.LABEL:
            if not _label_consistent(group):
                return False
        elif not _single_valued_consistent(group, always_present=field != MatchField.HEADER):
            return False
    return True


def satisfiable(predicate: Predicate) -> bool:
    """True unless the predicate is provably false for every request."""
    return any(conjunct_satisfiable(term) for term in to_dnf(predicate))


def may_overlap(first: Predicate, second: Predicate) -> bool:
    """True unless no request can satisfy both predicates."""
    return satisfiable(AndNode(statements=(first, second)))
