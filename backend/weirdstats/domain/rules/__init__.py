"""
Rule Engine : registre de metriques, evaluation des conditions et
echantillonnage deterministe des overrides.
"""

from .types import (
    ActivitySource,
    Action,
    Condition,
    Context,
    InvalidOperatorError,
    InvalidRuleError,
    Metric,
    OperatorSpec,
    Override,
    Rule,
    RuleError,
    StatsSource,
    Value,
    ValueType,
)
from .registry import MetricRegistry, default_registry, DEFAULT_OPERATORS
from .engine import parse_rule_json, validate_rule, evaluate, describe, allow_one_in
from .metadata import build_metadata, RulesMetadata

__all__ = [
    "ActivitySource", "Action", "Condition", "Context", "Metric", "OperatorSpec",
    "Override", "Rule", "StatsSource", "Value", "ValueType",
    "RuleError", "InvalidRuleError", "InvalidOperatorError",
    "MetricRegistry", "default_registry", "DEFAULT_OPERATORS",
    "parse_rule_json", "validate_rule", "evaluate", "describe", "allow_one_in",
    "build_metadata", "RulesMetadata",
]
