"""Rule loaders for loading rule definitions from various sources."""

import json
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from src.engine.domain.exceptions import InvalidRuleError
from src.engine.domain.models import RuleDefinition
from src.engine.domain.protocols import RuleLoader


def parse_rule(document: dict[str, Any] | RuleDefinition) -> RuleDefinition:
    """
    Validate one rule document.

    Raises:
        InvalidRuleError: if the document does not describe a valid rule
    """
    if isinstance(document, RuleDefinition):
        return document

    try:
        return RuleDefinition.model_validate(document)
    except ValidationError as e:
        name = document.get("name", "unknown") if isinstance(document, dict) else "unknown"
        errors = [f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()]
        raise InvalidRuleError(str(name), "malformed rule document", errors) from e


class DictRuleLoader(RuleLoader):
    """Simple loader that validates pre-provided rule documents."""

    def __init__(self, rules: list[dict[str, Any] | RuleDefinition]):
        self.rules = rules

    async def load_rules(self, **kwargs) -> list[RuleDefinition]:
        rules = [parse_rule(rule) for rule in self.rules]
        logger.info(f"Loaded {len(rules)} rules from dict")
        return rules


class JsonRuleLoader(RuleLoader):
    """Load rule documents from a JSON file holding one rule or a list of rules."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    async def load_rules(self, names: list[str] | None = None, **kwargs) -> list[RuleDefinition]:
        """
        Load rules from the JSON file.

        Args:
            names: Only return rules with these names
            **kwargs: Ignored

        Returns:
            Validated rule definitions
        """
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise InvalidRuleError(self.path.name, f"invalid JSON: {e}") from e

        documents = document if isinstance(document, list) else [document]
        rules = [parse_rule(doc) for doc in documents]
        if names is not None:
            rules = [rule for rule in rules if rule.name in names]

        logger.info(f"Loaded {len(rules)} rules from {self.path}")
        return rules
