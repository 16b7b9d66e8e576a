"""
Process-wide rule catalog for the Points service.
"""

import threading
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional

from shared.logging import get_logger
from .matcher import matches
from .models import RuleDefinition
from .source import RuleSource


class RuleCatalog:
    """Read-mostly mapping of rule name to rule definition.

    Readers grab the current immutable mapping without locking. Loads build
    a fresh mapping and swap the reference under the write lock, so a reader
    sees either the old rule set or the new one, never a mix.
    """

    def __init__(self, source: RuleSource):
        self.source = source
        self.logger = get_logger("points.rules.catalog")
        self._rules: Mapping[str, RuleDefinition] = MappingProxyType({})
        self._loaded = False
        self._write_lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def ensure_loaded(self) -> None:
        """Load from the source once per catalog lifetime."""
        if self._loaded:
            return
        with self._write_lock:
            if self._loaded:
                return
            self._install(self.source.load_rule_definitions())
            self._loaded = True

    def reload(self) -> Mapping[str, RuleDefinition]:
        """Load from the source again, replacing rules by name."""
        with self._write_lock:
            self._install(self.source.load_rule_definitions())
            self._loaded = True
        return self._rules

    def add_rules(self, rules: Iterable[RuleDefinition]) -> None:
        """Install definitions directly, replacing rules by name."""
        with self._write_lock:
            self._install(rules)

    def _install(self, rules: Iterable[RuleDefinition]) -> None:
        updated: Dict[str, RuleDefinition] = dict(self._rules)
        count = 0
        for rule in rules:
            if not rule.conditions:
                self.logger.warning("Rule has no conditions and matches every action", rule=rule.name)
            updated[rule.name] = rule
            count += 1
        self._rules = MappingProxyType(updated)
        self.logger.info("Rules loaded", loaded=count, total=len(updated))

    def get_loaded_rules(self) -> Mapping[str, RuleDefinition]:
        """Read-only snapshot of the current rules."""
        return self._rules

    def get_rule(self, name: str) -> Optional[RuleDefinition]:
        return self._rules.get(name)

    def matching(self, action_type: str) -> List[RuleDefinition]:
        """Active rules that apply to the action type, in load order."""
        return [rule for rule in self._rules.values() if matches(rule, action_type)]

    def get_catalog_stats(self) -> Dict[str, int]:
        """Get catalog statistics."""
        rules = self._rules
        return {
            "total_rules": len(rules),
            "active_rules": len([r for r in rules.values() if r.active]),
            "capped_rules": len([r for r in rules.values() if r.cap is not None]),
        }
