"""
Request fingerprints and vendor signatures.

A fingerprint identifies a request for caching and in-flight de-duplication;
a signature identifies a vendor for the pattern table.
"""

import hashlib
import json
import re
from typing import Any, Mapping, Optional

_WHITESPACE = re.compile(r"\s+")
_NON_ALNUM = re.compile(r"[^A-Z0-9 ]+")

# Corporate suffixes and card-processor noise that vary between statements
# of the same merchant.
_NOISE_TOKENS = {
    "INC", "LLC", "LTD", "CORP", "CO", "THE",
    "POS", "SQ", "TST", "PURCHASE", "DEBIT", "CARD",
}


def normalize_query(text: str) -> str:
    """Lowercase, trim and collapse whitespace."""
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text.strip().lower())


def normalize_signature(vendor: str) -> str:
    """Reduce a raw vendor description to a stable pattern-table key.

    ``"Starbucks Coffee #1234"`` and ``"STARBUCKS COFFEE"`` share the
    signature ``"STARBUCKS COFFEE"``: punctuation is dropped, tokens carrying
    digits (store numbers, dates) are removed, and so are corporate suffixes.
    """
    if not vendor:
        return ""
    cleaned = _NON_ALNUM.sub(" ", vendor.upper())
    tokens = [
        token for token in cleaned.split()
        if not any(ch.isdigit() for ch in token) and token not in _NOISE_TOKENS
    ]
    return " ".join(tokens)


def compute_fingerprint(
    user_id: str,
    query: str,
    context: Optional[Mapping[str, Any]] = None,
) -> str:
    """Derive a deterministic fingerprint for a request.

    Args:
        user_id: Opaque authenticated user id
        query: Free-form query text, normalized before hashing
        context: Relevant context (vendor signature, amount, transaction
            snapshot); serialized with sorted keys so dict order is irrelevant

    Returns:
        SHA-256 hex digest
    """
    canonical_context = json.dumps(
        dict(context or {}),
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    digest = hashlib.sha256()
    for part in (user_id or "", normalize_query(query), canonical_context):
        digest.update(part.encode("utf-8", errors="replace"))
        digest.update(b"\x00")
    return digest.hexdigest()
