"""
Condition tree evaluation.

A ConditionConfig holds ordered rules; the first rule whose condition holds
decides the text, otherwise the default is used. The chosen text may contain
[[Key]] placeholders, which are expanded a bounded number of times.
"""

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Union

import structlog

from akte.context import CaseInsensitiveDict, PlaceholderContext
from akte.models import (
    Comparison,
    ConditionConfig,
    EvaluationResult,
    EvaluationStep,
    Group,
)

logger = structlog.get_logger(__name__)

NUMERIC_EPSILON = 1e-4
DEFAULT_MAX_DEPTH = 5

_TRUE_WORDS = {"true", "ja", "1", "yes"}
_FALSE_WORDS = {"false", "nee", "0", "no"}

_DATE_FORMATS = ("%Y-%m-%d", "%d-%m-%Y", "%d/%m/%Y")

_NESTED_TOKEN = re.compile(r"\[\[([^\[\]]+?)\]\]")

ContextLike = Union[PlaceholderContext, Mapping[str, Any]]


# --- Coercion ---
def to_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float, Decimal)) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    return None


def to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def to_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        return None

    text = value.strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(text).replace(tzinfo=None)
    except ValueError:
        return None


def to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return ", ".join(to_text(v) for v in value)
    return str(value)


def _sign(x) -> int:
    return (x > 0) - (x < 0)


# --- Operators ---
def values_equal(actual: Any, expected: Any) -> bool:
    """
    Equality with coercion: booleans when both sides read as booleans, then
    numbers (within epsilon), then case-insensitive text. A missing value
    compares as the empty string.
    """
    if actual is None:
        actual = ""
    if expected is None:
        expected = ""

    b1, b2 = to_bool(actual), to_bool(expected)
    if b1 is not None and b2 is not None:
        return b1 == b2

    n1, n2 = to_number(actual), to_number(expected)
    if n1 is not None and n2 is not None:
        return abs(n1 - n2) < NUMERIC_EPSILON

    return to_text(actual).casefold() == to_text(expected).casefold()


def compare_values(actual: Any, expected: Any) -> int:
    """
    Three-way ordering: numeric, then dates, then case-insensitive text.
    None sorts before any other value.
    """
    if actual is None or expected is None:
        if actual is None and expected is None:
            return 0
        return -1 if actual is None else 1

    n1, n2 = to_number(actual), to_number(expected)
    if n1 is not None and n2 is not None:
        if abs(n1 - n2) < NUMERIC_EPSILON:
            return 0
        return _sign(n1 - n2)

    d1, d2 = to_datetime(actual), to_datetime(expected)
    if d1 is not None and d2 is not None:
        return _sign((d1 - d2).total_seconds())

    t1, t2 = to_text(actual).casefold(), to_text(expected).casefold()
    return (t1 > t2) - (t1 < t2)


def is_in_list(actual: Any, candidates: Any) -> bool:
    """True when actual equals any candidate. A missing value is never in a list."""
    if actual is None:
        return False
    if not isinstance(candidates, (list, tuple, set)):
        candidates = [candidates]
    return any(values_equal(actual, c) for c in candidates)


def _text_predicate(check):
    def _op(actual, expected):
        if actual is None or expected is None:
            return False
        return check(to_text(actual).casefold(), to_text(expected).casefold())

    return _op


OPERATORS = {
    "empty": lambda a, e: a is None or a == "",
    "not_empty": lambda a, e: not (a is None or a == ""),
    "=": values_equal,
    "!=": lambda a, e: not values_equal(a, e),
    ">": lambda a, e: compare_values(a, e) > 0,
    ">=": lambda a, e: compare_values(a, e) >= 0,
    "<": lambda a, e: compare_values(a, e) < 0,
    "<=": lambda a, e: compare_values(a, e) <= 0,
    "contains": _text_predicate(lambda a, e: e in a),
    "begins_with": _text_predicate(lambda a, e: a.startswith(e)),
    "ends_with": _text_predicate(lambda a, e: a.endswith(e)),
    "in": is_in_list,
    "not_in": lambda a, e: not is_in_list(a, e),
}


def _context_values(context: ContextLike) -> Mapping[str, Any]:
    if isinstance(context, PlaceholderContext):
        return context.values
    if isinstance(context, CaseInsensitiveDict):
        return context
    return CaseInsensitiveDict(context or {})


def _context_replacements(context: ContextLike) -> Mapping[str, str]:
    if isinstance(context, PlaceholderContext):
        return context.replacements
    return CaseInsensitiveDict({k: to_text(v) for k, v in (context or {}).items()})


def resolve_nested_placeholders(
    text: str, replacements: Mapping[str, str], max_depth: int = DEFAULT_MAX_DEPTH
) -> str:
    """
    Expands [[Key]] tokens until a pass substitutes nothing or max_depth passes ran.
    Unknown keys stay verbatim.
    """
    if not text:
        return text
    if not isinstance(replacements, CaseInsensitiveDict):
        replacements = CaseInsensitiveDict(replacements)

    for _ in range(max_depth):
        hits = 0

        def _sub(match):
            nonlocal hits
            key = match.group(1).strip()
            if key in replacements:
                hits += 1
                return replacements[key]
            return match.group(0)

        new_text = _NESTED_TOKEN.sub(_sub, text)
        if hits == 0:
            break
        text = new_text

    return text


class ConditionEvaluator:
    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH):
        self.max_depth = max_depth

    def evaluate(self, config: Union[ConditionConfig, Mapping, str], context: ContextLike) -> EvaluationResult:
        if not isinstance(config, ConditionConfig):
            config = ConditionConfig.from_json(config)

        values = _context_values(context)
        steps: List[EvaluationStep] = []

        for index, rule in enumerate(config.rules):
            if self._evaluate_condition(rule.condition, values, index, steps):
                logger.debug("Rule matched", rule_index=index)
                return EvaluationResult(matched_rule_index=index, raw_result=rule.result, steps=steps)

        return EvaluationResult(matched_rule_index=None, raw_result=config.default, steps=steps)

    def resolve(self, config: Union[ConditionConfig, Mapping, str], context: ContextLike) -> str:
        """Evaluates and expands nested [[Key]] placeholders in the chosen text."""
        result = self.evaluate(config, context)
        return resolve_nested_placeholders(result.raw_result, _context_replacements(context), self.max_depth)

    def _evaluate_condition(self, condition, values, rule_index: int, steps: List[EvaluationStep]) -> bool:
        if isinstance(condition, Group):
            if condition.operator == "AND":
                for child in condition.conditions:
                    if not self._evaluate_condition(child, values, rule_index, steps):
                        return False
                return True
            for child in condition.conditions:
                if self._evaluate_condition(child, values, rule_index, steps):
                    return True
            return False

        return self._evaluate_comparison(condition, values, rule_index, steps)

    def _evaluate_comparison(
        self, comparison: Comparison, values, rule_index: int, steps: List[EvaluationStep]
    ) -> bool:
        field, op = comparison.field, comparison.operator
        actual = values.get(field) if field else None

        if not field or not op:
            logger.warning("MalformedCondition: comparison without field or operator", field=field, operator=op)
            outcome = False
        elif op not in OPERATORS:
            logger.warning("UnknownOperator", field=field, operator=op)
            outcome = False
        else:
            outcome = bool(OPERATORS[op](actual, comparison.value))

        steps.append(
            EvaluationStep(
                rule_index=rule_index,
                field=field,
                operator=op,
                expected=comparison.value,
                actual=actual,
                outcome=outcome,
            )
        )
        return outcome


def apply_conditional_placeholders(
    conditionals: Mapping[str, Union[ConditionConfig, Mapping, str]],
    context: PlaceholderContext,
    evaluator: Optional[ConditionEvaluator] = None,
) -> Dict[str, str]:
    """
    Resolves each named condition config and stores the text in the context.
    Later entries see the values of earlier ones.
    Returns the new replacements.
    """
    evaluator = evaluator or ConditionEvaluator()
    resolved: Dict[str, str] = {}

    for name, config in conditionals.items():
        value = evaluator.resolve(config, context)
        context.set(name, value)
        resolved[name] = value
        logger.debug("Conditional placeholder resolved", name=name, length=len(value))

    logger.info(f"Resolved {len(resolved)} conditional placeholders")
    return resolved
