"""
Registre des metriques et table des operateurs.

Le registre est construit une fois (default_registry) puis passe aux
composants qui en ont besoin ; il est en lecture seule.
"""
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional, Tuple

from weirdstats.domain.rules.types import Context, Metric, OperatorSpec, Value, ValueType

ACTIVITY_TYPES = (
    "Ride",
    "Run",
    "Walk",
    "Hike",
    "Swim",
    "Workout",
    "VirtualRide",
    "EBikeRide",
    "GravelRide",
    "TrailRun",
    "Rowing",
    "NordicSki",
)

DEFAULT_OPERATORS: Mapping[ValueType, Tuple[OperatorSpec, ...]] = MappingProxyType({
    ValueType.NUMBER: (
        OperatorSpec(id="eq", label="=", value_count=1, value_mode="single"),
        OperatorSpec(id="neq", label="!=", value_count=1, value_mode="single"),
        OperatorSpec(id="lt", label="<", value_count=1, value_mode="single"),
        OperatorSpec(id="lte", label="<=", value_count=1, value_mode="single"),
        OperatorSpec(id="gt", label=">", value_count=1, value_mode="single"),
        OperatorSpec(id="gte", label=">=", value_count=1, value_mode="single"),
        OperatorSpec(id="between", label="between", value_count=2, value_mode="range"),
    ),
    ValueType.ENUM: (
        OperatorSpec(id="eq", label="is", value_count=1, value_mode="single"),
        OperatorSpec(id="neq", label="is not", value_count=1, value_mode="single"),
        OperatorSpec(id="in", label="in", value_count=-1, value_mode="list"),
        OperatorSpec(id="not_in", label="not in", value_count=-1, value_mode="list"),
    ),
})


class MetricRegistry(Mapping[str, Metric]):
    """Registre immuable metric_id -> Metric, avec sa table d'operateurs."""

    def __init__(
        self,
        metrics: Iterable[Metric],
        operators: Mapping[ValueType, Tuple[OperatorSpec, ...]] = DEFAULT_OPERATORS,
    ):
        self._metrics = MappingProxyType({metric.id: metric for metric in metrics})
        self.operators = operators

    def __getitem__(self, metric_id: str) -> Metric:
        return self._metrics[metric_id]

    def __iter__(self) -> Iterator[str]:
        return iter(self._metrics)

    def __len__(self) -> int:
        return len(self._metrics)

    def operator(self, value_type: ValueType, op: str) -> Optional[OperatorSpec]:
        """Retourne la spec de l'operateur `op` pour ce type, None s'il n'existe pas."""
        for candidate in self.operators.get(value_type, ()):
            if candidate.id == op:
                return candidate
        return None


def _number(value: float) -> Value:
    return Value(type=ValueType.NUMBER, num=float(value))


def _start_hour(ctx: Context) -> Value:
    if ctx.activity.start_unix == 0:
        return _number(0)
    return _number(datetime.fromtimestamp(ctx.activity.start_unix, tz=timezone.utc).hour)


def default_registry() -> MetricRegistry:
    """Construit le registre des metriques disponibles dans les regles."""
    return MetricRegistry([
        Metric(
            id="distance_m",
            label="Distance",
            description="Total distance in meters",
            unit="m",
            example="20000",
            type=ValueType.NUMBER,
            resolve=lambda ctx: _number(ctx.activity.distance_m),
        ),
        Metric(
            id="moving_time_s",
            label="Moving time",
            description="Moving time in seconds",
            unit="s",
            example="3600",
            type=ValueType.NUMBER,
            resolve=lambda ctx: _number(ctx.activity.moving_time_s),
        ),
        Metric(
            id="activity_type",
            label="Activity type",
            description="Strava activity type",
            unit="",
            example="Ride",
            type=ValueType.ENUM,
            enum=ACTIVITY_TYPES,
            resolve=lambda ctx: Value(type=ValueType.ENUM, text=ctx.activity.type),
        ),
        Metric(
            id="start_hour",
            label="Start hour",
            description="Hour of day activity started (0-23, UTC)",
            unit="h",
            example="22",
            type=ValueType.NUMBER,
            resolve=_start_hour,
        ),
        Metric(
            id="stop_count",
            label="Stop count",
            description="Number of detected stops",
            unit="",
            example="5",
            type=ValueType.NUMBER,
            resolve=lambda ctx: _number(ctx.stats.stop_count),
        ),
        Metric(
            id="stop_total_seconds",
            label="Stop total time",
            description="Total stop time in seconds",
            unit="s",
            example="600",
            type=ValueType.NUMBER,
            resolve=lambda ctx: _number(ctx.stats.stop_total_seconds),
        ),
        Metric(
            id="traffic_light_stop_count",
            label="Traffic light stops",
            description="Stops near traffic lights",
            unit="",
            example="3",
            type=ValueType.NUMBER,
            resolve=lambda ctx: _number(ctx.stats.traffic_light_stop_count),
        ),
    ])
