"""
Rule-based eligibility evaluation of an applicant against a benefit
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from benefits_bpp.core.logging_config import LoggingConfig
from benefits_bpp.core.utils import safe_get_nested

logger = LoggingConfig.get_logger(__name__)

# Keys merged into the application payload by the transaction controller;
# they identify the application and are never matched against rules
PAYLOAD_IDENTIFIER_KEYS = ("benefitId", "transactionId", "bapId", "bap_application_id")


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip().replace(",", ""))
        except ValueError:
            return None
    return None


def _normalize_pair(left: Any, right: Any) -> Tuple[Any, Any]:
    """Numbers when both sides parse as numbers, lowercased strings otherwise"""
    left_number, right_number = _as_number(left), _as_number(right)
    if left_number is not None and right_number is not None:
        return left_number, right_number
    return str(left).strip().lower(), str(right).strip().lower()


def _compare(left: Any, right: Any, op: Callable[[Any, Any], bool]) -> bool:
    a, b = _normalize_pair(left, right)
    try:
        return op(a, b)
    except TypeError:
        return False


def _values(condition_values: Any) -> List[Any]:
    """Operands of a list condition; a comma separated string lists several values"""
    if condition_values is None:
        return []
    if isinstance(condition_values, (list, tuple)):
        return list(condition_values)
    if isinstance(condition_values, str) and "," in condition_values:
        return [part.strip() for part in condition_values.split(",")]
    return [condition_values]


def _first(condition_values: Any) -> Any:
    """
    Operand of a scalar condition

    Strings are taken whole so grouped thresholds like "2,50,000" stay one number.
    """
    if isinstance(condition_values, (list, tuple)):
        return condition_values[0] if condition_values else None
    return condition_values


def _equals(actual, expected):
    return _compare(actual, _first(expected), lambda a, b: a == b)


def _not_equals(actual, expected):
    return not _equals(actual, expected)


def _in(actual, expected):
    return any(_compare(actual, value, lambda a, b: a == b) for value in _values(expected))


def _not_in(actual, expected):
    return not _in(actual, expected)


def _between(actual, expected):
    values = _values(expected)
    if len(values) != 2:
        return False
    low, high = values
    return _compare(actual, low, lambda a, b: a >= b) and _compare(actual, high, lambda a, b: a <= b)


CONDITIONS: Dict[str, Callable[[Any, Any], bool]] = {
    "equals": _equals,
    "notEquals": _not_equals,
    "in": _in,
    "notIn": _not_in,
    "lessThan": lambda actual, expected: _compare(actual, _first(expected), lambda a, b: a < b),
    "lessThanOrEquals": lambda actual, expected: _compare(actual, _first(expected), lambda a, b: a <= b),
    "greaterThan": lambda actual, expected: _compare(actual, _first(expected), lambda a, b: a > b),
    "greaterThanOrEquals": lambda actual, expected: _compare(actual, _first(expected), lambda a, b: a >= b),
    "between": _between,
}


@dataclass
class RuleOutcome:
    """Verdict for a single rule"""
    rule: str
    passed: bool
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"rule": self.rule, "passed": self.passed, "reason": self.reason}


@dataclass
class EligibilityResult:
    """Evaluation payload; the applicant lands in exactly one of the two lists"""
    eligible_users: List[Dict[str, Any]] = field(default_factory=list)
    ineligible_users: List[Dict[str, Any]] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_eligible(self) -> bool:
        return len(self.eligible_users) > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "eligibleUsers": self.eligible_users,
            "ineligibleUsers": self.ineligible_users,
            "details": self.details,
        }


def build_eligibility_input(
    benefit: Dict[str, Any],
    application: Dict[str, Any],
) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
    """
    Applicant attributes and rules for one application

    Args:
        benefit: Benefit record from the content provider
        application: Application as returned by Application.to_dict()

    Returns:
        (applicant_attributes, rules)
    """
    payload = application.get("applicationData") or {}
    attributes = {k: v for k, v in payload.items() if k not in PAYLOAD_IDENTIFIER_KEYS}
    attributes["applicationId"] = application.get("id")

    rules = benefit.get("eligibility") or []
    return attributes, [rule for rule in rules if isinstance(rule, dict)]


class EligibilityEvaluator:
    """
    Applies eligibility rules to applicant attributes

    Each rule reads ``criteria.name`` from the attributes and applies
    ``criteria.condition`` with ``criteria.conditionValues``.
    """

    def evaluate_rule(self, attributes: Dict[str, Any], rule: Dict[str, Any]) -> RuleOutcome:
        criteria = rule.get("criteria") or {}
        name = criteria.get("name") or rule.get("evidence") or ""
        condition = criteria.get("condition")
        label = f"{rule.get('type') or 'rule'}:{name}"

        check = CONDITIONS.get(condition)
        if check is None:
            return RuleOutcome(label, False, f"Unsupported condition '{condition}'")

        actual = safe_get_nested(attributes, name)
        if actual is None or actual == "":
            return RuleOutcome(label, False, f"Missing applicant attribute '{name}'")

        expected = criteria.get("conditionValues")
        if check(actual, expected):
            return RuleOutcome(label, True, f"{name} {condition} {expected}")
        return RuleOutcome(label, False, f"{name}={actual} does not satisfy {condition} {expected}")

    def evaluate(
        self,
        applicant_attributes: Dict[str, Any],
        rules: Sequence[Dict[str, Any]],
        strict: bool = True,
    ) -> EligibilityResult:
        """
        Evaluate an applicant

        Args:
            applicant_attributes: Declared attributes (decoded application payload)
            rules: Benefit eligibility rules
            strict: Every rule must pass; otherwise one passing rule is enough

        Returns:
            EligibilityResult; an empty rule list is always ineligible
        """
        applicant_id = applicant_attributes.get("applicationId")
        outcomes = [self.evaluate_rule(applicant_attributes, rule) for rule in rules]

        if not outcomes:
            eligible = False
        elif strict:
            eligible = all(outcome.passed for outcome in outcomes)
        else:
            eligible = any(outcome.passed for outcome in outcomes)

        if outcomes:
            # Eligible applicants list what passed, ineligible ones what failed
            reasons = [outcome.reason for outcome in outcomes if outcome.passed == eligible]
        else:
            reasons = ["No eligibility rules defined"]
        entry = {"applicationId": applicant_id, "reasons": reasons}
        result = EligibilityResult(
            details={
                "strict": strict,
                "rulesEvaluated": len(outcomes),
                "rulesPassed": sum(1 for outcome in outcomes if outcome.passed),
                "rules": [outcome.to_dict() for outcome in outcomes],
            },
        )
        if eligible:
            result.eligible_users.append(entry)
        else:
            result.ineligible_users.append(entry)

        logger.debug(
            f"Eligibility evaluated for application {applicant_id}: "
            f"{'eligible' if eligible else 'ineligible'} ({result.details['rulesPassed']}/{len(outcomes)} rules)"
        )
        return result
