"""
Rule sources for the Points service.
"""

import json
from pathlib import Path
from typing import Any, Iterable, List, Protocol, Union

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from shared.logging import get_logger
from shared.errors import RuleSourceUnavailable, ValidationError
from .models import RuleDefinition, RuleDocument


_documents = TypeAdapter(List[RuleDocument])


class RuleSource(Protocol):
    """Anything that can produce the full list of rule definitions."""

    def load_rule_definitions(self) -> List[RuleDefinition]:
        ...


class JsonRuleSource:
    """Rule source backed by a JSON rules file.

    The file holds either a list of rule objects or an object with a
    ``rules`` list. Keys follow the rules-file convention (``ruleName``,
    ``groupBasedActivity``, ``cap.maxPoints``, ``resetIntervalDays``).
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.logger = get_logger("points.rules.source")

    def load_rule_definitions(self) -> List[RuleDefinition]:
        """Read, validate and convert every rule in the file."""
        try:
            raw = self.path.read_text(encoding="utf-8")
        except OSError as e:
            self.logger.error("Rules file unreadable", path=str(self.path), error=str(e))
            raise RuleSourceUnavailable(
                f"Rules file not readable: {self.path}",
                {"path": str(self.path), "error": str(e)}
            ) from e

        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as e:
            self.logger.error("Rules file is not valid JSON", path=str(self.path), error=str(e))
            raise RuleSourceUnavailable(
                f"Rules file is not valid JSON: {self.path}",
                {"path": str(self.path), "line": e.lineno, "column": e.colno}
            ) from e

        return parse_rule_documents(payload, origin=str(self.path))


class StaticRuleSource:
    """Rule source over definitions already held in memory."""

    def __init__(self, rules: Iterable[RuleDefinition]):
        self._rules = list(rules)

    def load_rule_definitions(self) -> List[RuleDefinition]:
        return list(self._rules)


def parse_rule_documents(payload: Any, origin: str = "<memory>") -> List[RuleDefinition]:
    """Validate a decoded rules payload into rule definitions."""
    if isinstance(payload, dict) and "rules" in payload:
        payload = payload["rules"]

    if not isinstance(payload, list):
        raise RuleSourceUnavailable(
            f"Rules document must be a list of rules: {origin}",
            {"origin": origin, "type": type(payload).__name__}
        )

    try:
        documents = _documents.validate_python(payload)
    except PydanticValidationError as e:
        invalid = ValidationError(
            f"Rules document is malformed: {origin}",
            {"origin": origin, "errors": e.errors(include_url=False)}
        )
        raise RuleSourceUnavailable(invalid.message, invalid.details) from invalid

    return [document.to_definition() for document in documents]
