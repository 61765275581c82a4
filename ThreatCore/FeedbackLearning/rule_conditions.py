import logging
import re
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class ConditionOperator(Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    MATCHES = "matches"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"


@dataclass(frozen=True)
class RuleCondition:
    field: str
    operator: ConditionOperator
    value: str


def evaluate_condition(condition: RuleCondition, candidate: str) -> bool:
    """Single evaluation point for every learned-rule operator"""
    if candidate is None:
        return False

    operator = condition.operator
    if operator is ConditionOperator.EQUALS:
        return candidate == condition.value
    elif operator is ConditionOperator.CONTAINS:
        return condition.value in candidate
    elif operator is ConditionOperator.MATCHES:
        try:
            return re.search(condition.value, candidate, re.IGNORECASE) is not None
        except re.error as e:
            logger.warning(f"Invalid rule pattern {condition.value!r}: {e}")
            return False
    elif operator is ConditionOperator.STARTS_WITH:
        return candidate.startswith(condition.value)
    elif operator is ConditionOperator.ENDS_WITH:
        return candidate.endswith(condition.value)

    raise ValueError(f"Unsupported condition operator: {operator}")
