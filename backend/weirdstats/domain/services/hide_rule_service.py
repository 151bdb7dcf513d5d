"""
Administration des regles de masquage : creation, mise a jour, description.
Une regle n'est stockee qu'apres parsing et validation contre le registre.
"""
import logging
from typing import List, Optional, Tuple

from weirdstats.domain.entities.hide_rule import HideRule
from weirdstats.domain.rules import (
    MetricRegistry,
    Rule,
    RulesMetadata,
    build_metadata,
    default_registry,
    describe,
    parse_rule_json,
    validate_rule,
)
from weirdstats.domain.services.activity_store import ActivityStore

logger = logging.getLogger(__name__)


class HideRuleService:

    def __init__(self, store: ActivityStore, registry: Optional[MetricRegistry] = None):
        self.store = store
        self.registry = registry or default_registry()

    def _normalize(self, raw_json: str) -> Rule:
        """Parse et valide ; leve InvalidRuleError / InvalidOperatorError."""
        rule = parse_rule_json(raw_json)
        validate_rule(rule, self.registry)
        return rule

    def create_rule(self, user_id: int, name: str, raw_json: str, enabled: bool = True) -> HideRule:
        rule = self._normalize(raw_json)
        created = self.store.create_hide_rule(HideRule(
            user_id=user_id,
            name=name,
            condition=rule.to_json(),
            enabled=enabled,
        ))
        logger.info(f"Regle {created.id} creee pour l'utilisateur {user_id}: {describe(rule, self.registry)}")
        return created

    def update_rule(
        self,
        rule_id: int,
        name: Optional[str] = None,
        raw_json: Optional[str] = None,
        enabled: Optional[bool] = None,
    ) -> HideRule:
        existing = self.store.get_hide_rule(rule_id)
        if existing is None:
            raise LookupError(f"hide rule {rule_id} not found")
        if raw_json is not None:
            existing.condition = self._normalize(raw_json).to_json()
        if name is not None:
            existing.name = name
        if enabled is not None:
            existing.enabled = enabled
        return self.store.update_hide_rule(existing)

    def delete_rule(self, rule_id: int) -> bool:
        return self.store.delete_hide_rule(rule_id)

    def describe_rules(self, user_id: int) -> List[Tuple[HideRule, str]]:
        """Regles de l'utilisateur avec leur description lisible ('?' si illisible)."""
        described = []
        for row in self.store.list_hide_rules(user_id):
            try:
                description = describe(parse_rule_json(row.condition), self.registry)
            except ValueError as exc:
                logger.warning(f"Regle {row.id} illisible: {exc}")
                description = "?"
            described.append((row, description))
        return described

    def metadata(self) -> RulesMetadata:
        return build_metadata(self.registry)
