"""
Repository pattern for data access.

Persists the two pieces of state that outlive a session: the learned pattern
table and a snapshot of the result cache.
"""

import json
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from .db import DEFAULT_DB_PATH, get_connection
from .models import CacheEntry, ClassificationRule


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the classification_rule and cache_entry tables if missing.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS classification_rule (
                signature TEXT PRIMARY KEY,
                category TEXT NOT NULL,
                confidence REAL NOT NULL CHECK (confidence >= 0 AND confidence <= 1),
                sample_count INTEGER NOT NULL CHECK (sample_count >= 0),
                updated_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS cache_entry (
                fingerprint TEXT PRIMARY KEY,
                result TEXT NOT NULL,
                confidence REAL NOT NULL,
                created_at TEXT NOT NULL,
                expires_at TEXT NOT NULL,
                position INTEGER NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()


class RouterRepository:
    """Repository for the pattern table and cache snapshot.

    Cache results are serialized with ``encode_result`` and rebuilt with
    ``decode_result``; rows that fail to decode are skipped so a corrupt
    snapshot only costs cache misses.
    """

    def __init__(
        self,
        db_path: str = DEFAULT_DB_PATH,
        encode_result: Callable[[Any], Dict] = lambda result: result,
        decode_result: Callable[[Dict], Any] = lambda data: data,
    ):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
            encode_result: Converts a cached result into a JSON-compatible dict
            decode_result: Inverse of encode_result
        """
        self.db_path = db_path
        self.encode_result = encode_result
        self.decode_result = decode_result

    def initialize(self) -> None:
        initialize_schema(self.db_path)

    def load_rules(self) -> List[ClassificationRule]:
        """Load every classification rule, highest confidence first."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT signature, category, confidence, sample_count, updated_at
                FROM classification_rule
                ORDER BY confidence DESC, signature
            """)
            rules = []
            for row in cursor.fetchall():
                rules.append(ClassificationRule(
                    signature=row[0],
                    category=row[1],
                    confidence=row[2],
                    sample_count=row[3],
                    updated_at=datetime.fromisoformat(row[4]),
                ))
            return rules
        finally:
            conn.close()

    def save_rule(self, rule: ClassificationRule) -> None:
        """Insert or replace a single rule."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO classification_rule
                (signature, category, confidence, sample_count, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(signature) DO UPDATE SET
                    category = excluded.category,
                    confidence = excluded.confidence,
                    sample_count = excluded.sample_count,
                    updated_at = excluded.updated_at
            """, (
                rule.signature,
                rule.category,
                rule.confidence,
                rule.sample_count,
                rule.updated_at.isoformat(),
            ))
            conn.commit()
        finally:
            conn.close()

    def get_rule(self, signature: str) -> Optional[ClassificationRule]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("""
                SELECT signature, category, confidence, sample_count, updated_at
                FROM classification_rule WHERE signature = ?
            """, (signature,)).fetchone()
            if row is None:
                return None
            return ClassificationRule(
                signature=row[0],
                category=row[1],
                confidence=row[2],
                sample_count=row[3],
                updated_at=datetime.fromisoformat(row[4]),
            )
        finally:
            conn.close()

    def load_cache_entries(self) -> List[CacheEntry]:
        """Load the cache snapshot, least recently used first.

        Undecodable rows are skipped.
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                SELECT fingerprint, result, confidence, created_at, expires_at
                FROM cache_entry
                ORDER BY position
            """)
            entries = []
            for row in cursor.fetchall():
                try:
                    entries.append(CacheEntry(
                        fingerprint=row[0],
                        result=self.decode_result(json.loads(row[1])),
                        confidence=row[2],
                        created_at=datetime.fromisoformat(row[3]),
                        expires_at=datetime.fromisoformat(row[4]),
                    ))
                except (ValueError, TypeError, KeyError) as e:
                    logger.debug(f"Skipping unreadable cache row {row[0][:12]}: {e}")
            return entries
        finally:
            conn.close()

    def replace_cache_entries(self, entries: List[CacheEntry]) -> None:
        """Atomically replace the cache snapshot.

        Args:
            entries: Entries in recency order, least recently used first
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN TRANSACTION")
            conn.execute("DELETE FROM cache_entry")
            for position, entry in enumerate(entries):
                conn.execute("""
                    INSERT INTO cache_entry
                    (fingerprint, result, confidence, created_at, expires_at, position)
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (
                    entry.fingerprint,
                    json.dumps(self.encode_result(entry.result)),
                    entry.confidence,
                    entry.created_at.isoformat(),
                    entry.expires_at.isoformat(),
                    position,
                ))
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def clear_cache_entries(self) -> None:
        conn = get_connection(self.db_path)
        try:
            conn.execute("DELETE FROM cache_entry")
            conn.commit()
        finally:
            conn.close()
