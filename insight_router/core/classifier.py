"""
Local heuristic classifier.

Classification runs an ordered list of strategies and takes the first one
that has an answer:

1. Pattern match - exact PatternTable lookup on the vendor signature
2. Keyword heuristics - well-known merchant keywords
3. Amount bands - recurring small charges, large round transfers, small tickets
4. Fallback - generic category with low confidence

Confidence decreases down the list: a pattern match always reports at least
the heuristic ceiling, and the fallback sits below every heuristic.
"""

from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Protocol, Sequence, Tuple

from .fingerprint import normalize_signature
from .patterns import PatternTable

FALLBACK_CATEGORY = "Uncategorized"

HEURISTIC_CEILING = 0.6
KEYWORD_CONFIDENCE = 0.6
AMOUNT_BAND_CONFIDENCE = 0.55
SMALL_TICKET_CONFIDENCE = 0.5
FALLBACK_CONFIDENCE = 0.3

SUBSCRIPTION_MAX_AMOUNT = 30.0
SMALL_TICKET_MAX_AMOUNT = 15.0
TRANSFER_MIN_AMOUNT = 500.0

# Ordered: the first keyword found in the signature wins.
KEYWORD_CATEGORIES: Tuple[Tuple[str, str], ...] = (
    ("STARBUCKS", "Dining"),
    ("COFFEE", "Dining"),
    ("CAFE", "Dining"),
    ("RESTAURANT", "Dining"),
    ("PIZZA", "Dining"),
    ("GROCERY", "Groceries"),
    ("MARKET", "Groceries"),
    ("WHOLE FOODS", "Groceries"),
    ("UBER", "Transportation"),
    ("LYFT", "Transportation"),
    ("SHELL", "Transportation"),
    ("FUEL", "Transportation"),
    ("GAS", "Transportation"),
    ("NETFLIX", "Subscriptions"),
    ("SPOTIFY", "Subscriptions"),
    ("AMAZON", "Shopping"),
    ("WALMART", "Shopping"),
    ("TARGET", "Shopping"),
    ("PHONE", "Utilities"),
    ("INTERNET", "Utilities"),
    ("UTILITY", "Utilities"),
    ("ELECTRIC", "Utilities"),
    ("RENT", "Housing"),
    ("MORTGAGE", "Housing"),
    ("INSURANCE", "Insurance"),
    ("PHARMACY", "Healthcare"),
    ("MEDICAL", "Healthcare"),
)


@dataclass(frozen=True)
class LocalClassification:
    """Result of classifying a transaction locally."""
    category: str
    confidence: float
    reason: str
    signature: str
    strategy: str

    @property
    def is_usable(self) -> bool:
        """Whether this answer says anything beyond the generic fallback."""
        return self.category != FALLBACK_CATEGORY


class ClassificationStrategy(Protocol):
    """One rule in the classification chain."""

    name: str

    def evaluate(
        self, signature: str, amount: float, context: Mapping[str, Any]
    ) -> Optional[Tuple[str, float, str]]:
        """Return (category, confidence, reason), or None to defer."""
        ...


class PatternMatchStrategy:
    """Exact lookup of the vendor signature in the pattern table."""

    name = "pattern"

    def __init__(self, table: PatternTable):
        self.table = table

    def evaluate(self, signature, amount, context):
        rule = self.table.lookup(signature)
        if rule is None:
            return None
        # Learned evidence never ranks below the heuristics.
        confidence = max(rule.confidence, HEURISTIC_CEILING)
        return (
            rule.category,
            confidence,
            f"Learned pattern for '{signature}' ({rule.sample_count} samples)",
        )


class KeywordStrategy:
    """Merchant keyword table."""

    name = "keyword"

    def __init__(self, keywords: Sequence[Tuple[str, str]] = KEYWORD_CATEGORIES):
        self.keywords = keywords

    def evaluate(self, signature, amount, context):
        padded = f" {signature} "
        for keyword, category in self.keywords:
            if f" {keyword} " in padded:
                return category, KEYWORD_CONFIDENCE, f"Vendor name mentions '{keyword.lower()}'"
        return None


class AmountBandStrategy:
    """Amount-based heuristics."""

    name = "amount"

    def evaluate(self, signature, amount, context):
        recurring = bool(context.get("recurring"))
        if recurring and 0 < amount <= SUBSCRIPTION_MAX_AMOUNT:
            return "Subscriptions", AMOUNT_BAND_CONFIDENCE, "Small recurring charge"
        if amount >= TRANSFER_MIN_AMOUNT and float(amount).is_integer() and amount % 50 == 0:
            return "Transfers", AMOUNT_BAND_CONFIDENCE, "Large round amount"
        if 0 < amount <= SMALL_TICKET_MAX_AMOUNT:
            return "Dining", SMALL_TICKET_CONFIDENCE, "Small amount suggests food or coffee"
        return None


class FallbackStrategy:
    """Always answers, with low confidence."""

    name = "fallback"

    def evaluate(self, signature, amount, context):
        return FALLBACK_CATEGORY, FALLBACK_CONFIDENCE, "Not enough information to categorize"


class LocalClassifier:
    """Applies the strategy chain to a transaction-like input.

    Read-only against the pattern table.
    """

    def __init__(
        self,
        table: PatternTable,
        strategies: Optional[List[ClassificationStrategy]] = None,
    ):
        self.table = table
        self.strategies = strategies or [
            PatternMatchStrategy(table),
            KeywordStrategy(),
            AmountBandStrategy(),
            FallbackStrategy(),
        ]

    def classify(
        self,
        vendor: str,
        amount: float,
        context: Optional[Mapping[str, Any]] = None,
    ) -> LocalClassification:
        """Classify a transaction.

        Args:
            vendor: Raw vendor/merchant description
            amount: Transaction amount (absolute value is used)
            context: Optional extra hints, e.g. ``{"recurring": True}``

        Returns:
            The first strategy result, in priority order
        """
        signature = normalize_signature(vendor)
        amount = abs(float(amount or 0.0))
        context = context or {}

        for strategy in self.strategies:
            result = strategy.evaluate(signature, amount, context)
            if result is not None:
                category, confidence, reason = result
                return LocalClassification(
                    category=category,
                    confidence=min(1.0, max(0.0, confidence)),
                    reason=reason,
                    signature=signature,
                    strategy=strategy.name,
                )

        return LocalClassification(
            category=FALLBACK_CATEGORY,
            confidence=FALLBACK_CONFIDENCE,
            reason="Not enough information to categorize",
            signature=signature,
            strategy=FallbackStrategy.name,
        )
