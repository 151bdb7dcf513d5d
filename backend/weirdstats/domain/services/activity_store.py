"""
Acces persistant aux activites, points GPS, statistiques, arrets et regles.

Chaque operation logique ouvre sa propre Session et la commit en une seule
transaction ; aucune ne garde de transaction ouverte pendant un appel reseau.
"""
import logging
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy.engine import Engine
from sqlmodel import Session, select, func

from weirdstats.domain.entities.activity import Activity, ActivityPoint
from weirdstats.domain.entities.activity_stats import ActivityStats, ActivityStop
from weirdstats.domain.entities.hide_rule import HideRule
from weirdstats.domain.gps.types import Point

logger = logging.getLogger(__name__)

# Champs recopies lors d'une mise a jour depuis Strava (hidden_by_rule est preserve)
_UPSERT_FIELDS = (
    "user_id", "type", "name", "start_time", "description", "distance", "moving_time",
    "average_power", "average_heartrate", "visibility", "is_private", "hide_from_home",
)
_STATS_FIELDS = (
    "stop_count", "stop_total_seconds", "traffic_light_stop_count", "road_crossing_count",
    "effort_score", "effort_version",
)


class ActivityStore:
    """Repository des activites et de leurs donnees derivees."""

    def __init__(self, engine: Optional[Engine] = None):
        if engine is None:
            from weirdstats.core.database import engine as default_engine
            engine = default_engine
        self.engine = engine

    def session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    # ------------------------------------------------------------------
    # Activites et points
    # ------------------------------------------------------------------

    def upsert_activity(self, activity: Activity, points: Optional[Sequence[Point]] = None) -> int:
        """Insere ou met a jour l'activite. Si `points` est fourni, remplace les points."""
        if activity.id is None:
            raise ValueError("activity id required")
        if activity.start_time is None:
            raise ValueError("activity start time required")

        now = datetime.utcnow()
        with self.session() as session:
            existing = session.get(Activity, activity.id)
            if existing:
                for field_name in _UPSERT_FIELDS:
                    setattr(existing, field_name, getattr(activity, field_name))
                existing.updated_at = now
                session.add(existing)
            else:
                activity.updated_at = now
                session.add(activity)

            if points is not None:
                old_points = session.exec(
                    select(ActivityPoint).where(ActivityPoint.activity_id == activity.id)
                ).all()
                for old in old_points:
                    session.delete(old)
                if old_points:
                    session.flush()
                session.add_all([
                    ActivityPoint(
                        activity_id=activity.id,
                        seq=seq,
                        lat=point.lat,
                        lon=point.lon,
                        ts=point.time,
                        speed=point.speed,
                    )
                    for seq, point in enumerate(points)
                ])

            activity_id = activity.id
            session.commit()
        return activity_id

    def get_activity(self, activity_id: int) -> Optional[Activity]:
        with self.session() as session:
            return session.get(Activity, activity_id)

    def has_activity(self, activity_id: int) -> bool:
        return self.get_activity(activity_id) is not None

    def count_activity_points(self, activity_id: int) -> int:
        with self.session() as session:
            return session.exec(
                select(func.count()).select_from(ActivityPoint).where(
                    ActivityPoint.activity_id == activity_id
                )
            ).one()

    def load_activity_points(self, activity_id: int) -> List[Point]:
        """Points ordonnes par numero de sequence."""
        with self.session() as session:
            rows = session.exec(
                select(ActivityPoint)
                .where(ActivityPoint.activity_id == activity_id)
                .order_by(ActivityPoint.seq)
            ).all()
            return [Point(lat=row.lat, lon=row.lon, time=row.ts, speed=row.speed) for row in rows]

    def update_activity_hidden_by_rule(self, activity_id: int, hidden: bool) -> None:
        with self.session() as session:
            activity = session.get(Activity, activity_id)
            if activity is None:
                logger.warning(f"Activite {activity_id} introuvable, hidden_by_rule non mis a jour")
                return
            activity.hidden_by_rule = hidden
            activity.updated_at = datetime.utcnow()
            session.add(activity)
            session.commit()

    def list_recent_average_heartrates(self, user_id: int, before: datetime, limit: int) -> List[float]:
        """FC moyennes (> 0) des dernieres activites de l'utilisateur avant `before`."""
        with self.session() as session:
            return list(session.exec(
                select(Activity.average_heartrate)
                .where(
                    Activity.user_id == user_id,
                    Activity.start_time < before,
                    Activity.average_heartrate > 0,
                )
                .order_by(Activity.start_time.desc())
                .limit(limit)
            ).all())

    # ------------------------------------------------------------------
    # Statistiques et arrets
    # ------------------------------------------------------------------

    def _write_stats(self, session: Session, stats: ActivityStats, now: datetime) -> None:
        existing = session.get(ActivityStats, stats.activity_id)
        if existing:
            for field_name in _STATS_FIELDS:
                setattr(existing, field_name, getattr(stats, field_name))
            existing.updated_at = now
            session.add(existing)
        else:
            stats.updated_at = now
            session.add(stats)

    def _write_stops(self, session: Session, activity_id: int, stops: Sequence[ActivityStop], now: datetime) -> None:
        old_stops = session.exec(
            select(ActivityStop).where(ActivityStop.activity_id == activity_id)
        ).all()
        for old in old_stops:
            session.delete(old)
        if old_stops:
            session.flush()
        for stop in stops:
            stop.activity_id = activity_id
            stop.updated_at = now
            session.add(stop)

    def upsert_activity_stats(self, stats: ActivityStats) -> None:
        with self.session() as session:
            self._write_stats(session, stats, datetime.utcnow())
            session.commit()

    def get_activity_stats(self, activity_id: int) -> Optional[ActivityStats]:
        with self.session() as session:
            return session.get(ActivityStats, activity_id)

    def replace_activity_analysis(self, stats: ActivityStats, stops: Sequence[ActivityStop]) -> None:
        """
        Ecrit les statistiques et remplace les arrets dans une seule transaction :
        en cas d'echec, ni les statistiques ni les arrets precedents ne changent.
        """
        now = datetime.utcnow()
        with self.session() as session:
            self._write_stats(session, stats, now)
            self._write_stops(session, stats.activity_id, stops, now)
            session.commit()

    def load_activity_stops(self, activity_id: int) -> List[ActivityStop]:
        with self.session() as session:
            return list(session.exec(
                select(ActivityStop)
                .where(ActivityStop.activity_id == activity_id)
                .order_by(ActivityStop.seq)
            ).all())

    # ------------------------------------------------------------------
    # Regles de masquage
    # ------------------------------------------------------------------

    def list_hide_rules(self, user_id: int) -> List[HideRule]:
        with self.session() as session:
            return list(session.exec(
                select(HideRule).where(HideRule.user_id == user_id).order_by(HideRule.id)
            ).all())

    def get_hide_rule(self, rule_id: int) -> Optional[HideRule]:
        with self.session() as session:
            return session.get(HideRule, rule_id)

    def create_hide_rule(self, rule: HideRule) -> HideRule:
        now = datetime.utcnow()
        rule.created_at = now
        rule.updated_at = now
        with self.session() as session:
            session.add(rule)
            session.commit()
            session.refresh(rule)
            return rule

    def update_hide_rule(self, rule: HideRule) -> HideRule:
        with self.session() as session:
            existing = session.get(HideRule, rule.id)
            if existing is None:
                raise LookupError(f"hide rule {rule.id} not found")
            existing.name = rule.name
            existing.condition = rule.condition
            existing.enabled = rule.enabled
            existing.updated_at = datetime.utcnow()
            session.add(existing)
            session.commit()
            session.refresh(existing)
            return existing

    def delete_hide_rule(self, rule_id: int) -> bool:
        with self.session() as session:
            existing = session.get(HideRule, rule_id)
            if existing is None:
                return False
            session.delete(existing)
            session.commit()
            return True
