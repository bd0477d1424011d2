"""
Pattern table of learned vendor classifications.

Readers look rules up by normalized vendor signature; FeedbackLearner is the
only writer.
"""

from typing import Dict, Iterable, List, Optional

from insight_router.storage.models import ClassificationRule


class PatternTable:
    """In-memory signature -> ClassificationRule mapping.

    Rules are never deleted; a correction replaces a rule in place.
    """

    def __init__(self, rules: Optional[Iterable[ClassificationRule]] = None):
        self._rules: Dict[str, ClassificationRule] = {}
        for rule in rules or ():
            self._rules[rule.signature] = rule

    def lookup(self, signature: str) -> Optional[ClassificationRule]:
        if not signature:
            return None
        return self._rules.get(signature)

    def upsert(self, rule: ClassificationRule) -> None:
        """Insert or replace the rule for ``rule.signature``."""
        self._rules[rule.signature] = rule

    def rules(self) -> List[ClassificationRule]:
        """All rules, highest confidence first."""
        return sorted(self._rules.values(), key=lambda r: (-r.confidence, r.signature))

    def load(self, rules: Iterable[ClassificationRule]) -> None:
        """Replace the table contents, e.g. after reading from storage."""
        self._rules = {rule.signature: rule for rule in rules}

    def clear(self) -> None:
        self._rules.clear()

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, signature: str) -> bool:
        return signature in self._rules
