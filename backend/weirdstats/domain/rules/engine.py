"""
Moteur de regles : parsing, validation, evaluation et description.

Evaluation : chaque condition resout sa metrique depuis le contexte puis
applique l'operateur ; `all` s'arrete au premier echec, `any` au premier
succes. Si la regle matche et porte un override `one_in = N`, un hash
deterministe de (rule_id, activity_id) demasque 1 activite sur N :
hide = not allow_one_in(...).
"""
import math
from typing import Any, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from weirdstats.domain.rules.registry import MetricRegistry
from weirdstats.domain.rules.types import (
    Context,
    InvalidOperatorError,
    InvalidRuleError,
    OperatorSpec,
    Rule,
    ValueType,
)

MATCH_MODES = ("all", "any")
SUPPORTED_ACTIONS = ("hide",)

FNV64_OFFSET = 0xCBF29CE484222325
FNV64_PRIME = 0x100000001B3
_UINT64_MASK = 0xFFFFFFFFFFFFFFFF


def parse_rule_json(raw: str) -> Rule:
    """Decode une regle JSON ; `match` vaut 'all' et l'action 'hide' par defaut."""
    try:
        return Rule.model_validate_json(raw)
    except ValidationError as exc:
        raise InvalidRuleError(f"invalid rule json: {exc}") from exc


# ------------------------------------------------------------------
# Validation
# ------------------------------------------------------------------

def _to_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _to_string(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value
    return None


def _number_values(values: Sequence[Any]) -> List[float]:
    parsed = []
    for value in values:
        number = _to_float(value)
        if number is None or math.isnan(number):
            raise InvalidRuleError("numeric value expected")
        parsed.append(number)
    return parsed


def _string_values(values: Sequence[Any]) -> List[str]:
    parsed = []
    for value in values:
        text = _to_string(value)
        if text is None:
            raise InvalidRuleError("string value expected")
        parsed.append(text)
    return parsed


def _validate_values(value_type: ValueType, operator: OperatorSpec, values: Sequence[Any]) -> None:
    count = len(values)
    if operator.value_count == 1 and count != 1:
        raise InvalidRuleError(f"operator {operator.id} expects one value")
    if operator.value_count == 2 and count != 2:
        raise InvalidRuleError(f"operator {operator.id} expects two values")
    if operator.value_count == -1 and count < 1:
        raise InvalidRuleError(f"operator {operator.id} expects at least one value")

    if value_type == ValueType.NUMBER:
        _number_values(values)
    elif value_type == ValueType.ENUM:
        _string_values(values)
    else:
        raise InvalidRuleError("unsupported metric type")


def _resolve_operator(registry: MetricRegistry, metric_id: str, op: str) -> Tuple[Any, OperatorSpec]:
    metric = registry.get(metric_id)
    if metric is None:
        raise InvalidRuleError(f"unknown metric {metric_id}")
    operator = registry.operator(metric.type, op)
    if operator is None:
        raise InvalidOperatorError(f"invalid operator {op}")
    return metric, operator


def _validate_action(rule: Rule) -> None:
    action = rule.action
    if action.type not in SUPPORTED_ACTIONS:
        raise InvalidRuleError(f"unsupported action {action.type}")
    for name, override in (("override", action.override), ("allow", action.allow)):
        if override is not None and 0 < override.one_in < 2:
            raise InvalidRuleError(f"{name}.one_in must be >= 2")
    if (action.override is not None and action.allow is not None
            and action.override.one_in > 0 and action.allow.one_in > 0
            and action.override.one_in != action.allow.one_in):
        raise InvalidRuleError("override and allow disagree on one_in")


def validate_rule(rule: Rule, registry: MetricRegistry) -> None:
    """Leve InvalidRuleError / InvalidOperatorError si la regle est invalide."""
    if not rule.conditions:
        raise InvalidRuleError("at least one condition required")
    if rule.match not in MATCH_MODES:
        raise InvalidRuleError("match must be all or any")
    _validate_action(rule)
    for condition in rule.conditions:
        metric, operator = _resolve_operator(registry, condition.metric, condition.op)
        _validate_values(metric.type, operator, condition.values)


# ------------------------------------------------------------------
# Evaluation
# ------------------------------------------------------------------

def _eval_number(op: str, metric: float, values: List[float]) -> bool:
    if op == "eq":
        return metric == values[0]
    if op == "neq":
        return metric != values[0]
    if op == "lt":
        return metric < values[0]
    if op == "lte":
        return metric <= values[0]
    if op == "gt":
        return metric > values[0]
    if op == "gte":
        return metric >= values[0]
    if op == "between":
        low, high = values[0], values[1]
        if low > high:
            low, high = high, low
        return low <= metric <= high
    raise InvalidOperatorError(f"invalid operator {op}")


def _eval_enum(op: str, metric: str, values: List[str]) -> bool:
    metric_norm = metric.lower()
    candidates = [value.lower() for value in values]
    if op == "eq":
        return candidates[0] == metric_norm
    if op == "neq":
        return candidates[0] != metric_norm
    if op == "in":
        return metric_norm in candidates
    if op == "not_in":
        return metric_norm not in candidates
    raise InvalidOperatorError(f"invalid operator {op}")


def allow_one_in(rule_id: int, activity_id: int, n: int) -> bool:
    """True pour ~1 couple (regle, activite) sur n, de facon stable (FNV-1a 64 bits)."""
    if n <= 1:
        return True
    digest = FNV64_OFFSET
    for byte in f"{rule_id}:{activity_id}".encode():
        digest ^= byte
        digest = (digest * FNV64_PRIME) & _UINT64_MASK
    return digest % n == 0


def evaluate(rule: Rule, registry: MetricRegistry, ctx: Context, rule_id: int) -> Tuple[bool, bool]:
    """Evalue la regle. Retourne (matched, hide)."""
    match_all = rule.match != "any"
    matched = match_all
    for condition in rule.conditions:
        metric, operator = _resolve_operator(registry, condition.metric, condition.op)
        _validate_values(metric.type, operator, condition.values)
        value = metric.resolve(ctx)
        if metric.type == ValueType.NUMBER:
            condition_matched = _eval_number(condition.op, value.num, _number_values(condition.values))
        else:
            condition_matched = _eval_enum(condition.op, value.text, _string_values(condition.values))

        if match_all and not condition_matched:
            matched = False
            break
        if not match_all and condition_matched:
            matched = True
            break

    if not matched:
        return False, False
    if rule.action.type not in SUPPORTED_ACTIONS:
        raise InvalidRuleError(f"unsupported action {rule.action.type}")

    one_in = rule.action.sampling_one_in()
    if one_in >= 2:
        return True, not allow_one_in(rule_id, ctx.activity.id, one_in)
    return True, True


# ------------------------------------------------------------------
# Description
# ------------------------------------------------------------------

def _trim_float(value: float) -> str:
    if math.isfinite(value) and value == int(value):
        return str(int(value))
    return f"{value:.2f}"


def _format_values(value_type: ValueType, unit: str, values: Sequence[Any]) -> str:
    try:
        if value_type == ValueType.NUMBER:
            suffix = f" {unit}" if unit else ""
            return " and ".join(f"{_trim_float(number)}{suffix}" for number in _number_values(values))
        return ", ".join(_string_values(values))
    except InvalidRuleError:
        return "?"


def describe(rule: Rule, registry: MetricRegistry) -> str:
    """Rendu lisible d'une regle, pour affichage uniquement."""
    parts = []
    for condition in rule.conditions:
        metric = registry.get(condition.metric)
        if metric is None:
            parts.append(condition.metric)
            continue
        operator = registry.operator(metric.type, condition.op)
        label = operator.label if operator is not None else condition.op
        parts.append(f"{metric.label} {label} {_format_values(metric.type, metric.unit, condition.values)}")

    joiner = " OR " if rule.match == "any" else " AND "
    description = joiner.join(parts)
    one_in = rule.action.sampling_one_in()
    if one_in >= 2:
        description += f" · override: unmute 1 in {one_in}"
    return description
