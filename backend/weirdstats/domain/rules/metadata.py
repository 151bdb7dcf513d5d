"""
Metadonnees du registre exposees au front (formulaire de regles).
"""
from typing import Dict, List

from pydantic import BaseModel

from weirdstats.domain.rules.registry import MetricRegistry
from weirdstats.domain.rules.types import OperatorSpec


class MetricMeta(BaseModel):
    id: str
    label: str
    description: str
    unit: str
    example: str
    type: str
    enum: List[str] = []


class RulesMetadata(BaseModel):
    metrics: List[MetricMeta]
    operators: Dict[str, List[OperatorSpec]]


def build_metadata(registry: MetricRegistry) -> RulesMetadata:
    """Metriques triees par id et operateurs par type de valeur."""
    metrics = [
        MetricMeta(
            id=metric.id,
            label=metric.label,
            description=metric.description,
            unit=metric.unit,
            example=metric.example,
            type=metric.type.value,
            enum=list(metric.enum),
        )
        for metric in sorted(registry.values(), key=lambda m: m.id)
    ]
    operators = {value_type.value: list(specs) for value_type, specs in registry.operators.items()}
    return RulesMetadata(metrics=metrics, operators=operators)
