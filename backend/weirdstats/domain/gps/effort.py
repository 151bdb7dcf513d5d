"""
Score d'effort : minutes de mouvement x facteur sport x facteur cardiaque.

Le facteur cardiaque compare la FC moyenne de l'activite a une reference
personnelle (mediane des dernieres FC moyennes de l'utilisateur).
"""
import statistics
from typing import Optional, Sequence

EFFORT_VERSION = 1
# Reference FC utilisee quand l'historique est vide
EFFORT_HR_REF_FALLBACK = 120.0
# Nombre d'activites passees pour la mediane
EFFORT_HR_WINDOW = 50
EFFORT_HR_FACTOR_MIN = 0.6
EFFORT_HR_FACTOR_MAX = 2.5

SPORT_FACTORS = {
    "swim": 2.2,
    "openwaterswim": 2.2,
    "poolswim": 2.2,
    "run": 2.0,
    "trailrun": 2.0,
    "virtualrun": 2.0,
    "treadmill": 2.0,
    "ride": 1.6,
    "virtualride": 1.6,
    "mountainbikeride": 1.6,
    "gravelride": 1.6,
    "ebikeride": 1.5,
    "walk": 1.0,
    "hike": 1.8,
    "workout": 1.7,
    "weighttraining": 1.6,
    "strengthtraining": 1.6,
    "crossfit": 1.7,
    "hiit": 1.8,
    "rowing": 1.7,
    "rowergometer": 1.7,
    "kayaking": 1.5,
    "canoeing": 1.5,
    "alpineski": 1.6,
    "nordicski": 1.6,
    "backcountryski": 1.7,
    "snowboard": 1.6,
    "snowshoe": 1.6,
    "yoga": 0.7,
    "pilates": 0.7,
    "elliptical": 1.5,
    "stairstepper": 1.7,
    "stairclimber": 1.7,
}


def normalize_activity_type(value: str) -> str:
    """'Trail Run', 'trail_run' et 'trail-run' donnent 'trailrun'."""
    if not value:
        return ""
    normalized = value.lower()
    for char in (" ", "_", "-"):
        normalized = normalized.replace(char, "")
    return normalized


def sport_factor(activity_type: str) -> float:
    return SPORT_FACTORS.get(normalize_activity_type(activity_type), 1.0)


def heart_rate_reference(recent_rates: Sequence[float]) -> float:
    """Mediane des FC moyennes recentes, ou la valeur de repli."""
    values = [rate for rate in recent_rates if rate > 0]
    if not values:
        return EFFORT_HR_REF_FALLBACK
    return float(statistics.median(values))


def _clamp(value: float, min_value: float, max_value: float) -> float:
    return max(min_value, min(max_value, value))


def compute_effort(
    moving_time_s: int,
    activity_type: str,
    average_heartrate: float = 0.0,
    hr_reference: Optional[float] = None,
) -> float:
    """Calcule le score d'effort (version EFFORT_VERSION)."""
    minutes = moving_time_s / 60.0
    if minutes <= 0:
        return 0.0

    hr_factor = 1.0
    if average_heartrate and average_heartrate > 0:
        reference = hr_reference if hr_reference and hr_reference > 0 else EFFORT_HR_REF_FALLBACK
        ratio = average_heartrate / reference
        hr_factor = _clamp(ratio ** 2, EFFORT_HR_FACTOR_MIN, EFFORT_HR_FACTOR_MAX)

    return minutes * sport_factor(activity_type) * hr_factor
