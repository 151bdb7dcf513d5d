"""
Types du moteur de regles : valeurs, contexte d'evaluation, metriques et
schema JSON des regles (pydantic).
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator


class ValueType(str, Enum):
    NUMBER = "number"
    ENUM = "enum"


class RuleError(ValueError):
    """Erreur de base du moteur de regles."""


class InvalidRuleError(RuleError):
    """Regle mal formee : metrique inconnue, arite ou type de valeur incorrect..."""


class InvalidOperatorError(RuleError):
    """Operateur inconnu pour le type de la metrique."""


# ------------------------------------------------------------------
# Contexte d'evaluation
# ------------------------------------------------------------------

@dataclass(frozen=True)
class Value:
    type: ValueType
    num: float = 0.0
    text: str = ""


@dataclass(frozen=True)
class ActivitySource:
    id: int = 0
    type: str = ""
    name: str = ""
    start_unix: int = 0
    distance_m: float = 0.0
    moving_time_s: int = 0


@dataclass(frozen=True)
class StatsSource:
    stop_count: int = 0
    stop_total_seconds: int = 0
    traffic_light_stop_count: int = 0


@dataclass(frozen=True)
class Context:
    activity: ActivitySource = field(default_factory=ActivitySource)
    stats: StatsSource = field(default_factory=StatsSource)


@dataclass(frozen=True)
class Metric:
    """Entree du registre : valeur typee calculee depuis le contexte."""
    id: str
    label: str
    description: str
    unit: str
    example: str
    type: ValueType
    resolve: Callable[[Context], Value]
    enum: Tuple[str, ...] = ()


@dataclass(frozen=True)
class OperatorSpec:
    id: str
    label: str
    value_count: int  # -1 = au moins une valeur
    value_mode: str  # single, range, list


# ------------------------------------------------------------------
# Schema JSON d'une regle
# ------------------------------------------------------------------

class Override(BaseModel):
    """Echantillonnage deterministe : demasque 1 activite sur `one_in`."""
    one_in: int = 0


class Action(BaseModel):
    type: str = "hide"
    override: Optional[Override] = None
    # Ancien nom de `override`, toujours accepte en lecture
    allow: Optional[Override] = None

    @field_validator("type", mode="before")
    @classmethod
    def _default_type(cls, value: Any) -> Any:
        return value or "hide"

    def sampling_one_in(self) -> int:
        """N effectif de l'override (0 si absent). `override` prime sur `allow`."""
        if self.override is not None and self.override.one_in > 0:
            return self.override.one_in
        if self.allow is not None and self.allow.one_in > 0:
            return self.allow.one_in
        return 0


class Condition(BaseModel):
    metric: str
    op: str
    values: List[Any] = Field(default_factory=list)


class Rule(BaseModel):
    match: str = "all"
    conditions: List[Condition] = Field(default_factory=list)
    action: Action = Field(default_factory=Action)

    @field_validator("match", mode="before")
    @classmethod
    def _default_match(cls, value: Any) -> Any:
        return value or "all"

    def to_json(self) -> str:
        return self.model_dump_json(exclude_none=True)
