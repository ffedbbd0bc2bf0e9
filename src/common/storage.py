"""
Durable Storage
===============

SQLite implementation of the store the classifier reads from and the
recomputer writes to. It holds three tables:

- ``categories``: name, optional description and per-category threshold;
- ``examples``: example texts and, once computed, their embedding;
- ``settings``: small key/value rows, including the freshness marker.

Embeddings cross the storage boundary through an explicit, versioned codec
(`encode_vector` / `decode_vector`) so the in-memory model never depends on
the column format. Every operation opens its own connection, which keeps the
store safe to use from the recomputer's worker threads.

Row order is part of the contract: categories are returned ordered by name
and examples by id. The match engine's first-seen tie-break relies on it.
"""

from __future__ import annotations

import json
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, Iterator, Sequence

import numpy as np
import structlog

from .errors import StorageError
from .models import (
    Category,
    CategoryStatus,
    EmbeddingStatus,
    ExampleVector,
    PendingExample,
)

log = structlog.get_logger(__name__)

CODEC_VERSION = 1
FRESHNESS_MARKER_KEY = "embeddings_updated_at"

SCHEMA = """
CREATE TABLE IF NOT EXISTS categories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    description TEXT,
    threshold REAL DEFAULT 0.4,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS examples (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    category_id INTEGER NOT NULL REFERENCES categories(id) ON DELETE CASCADE,
    text TEXT NOT NULL,
    embedding TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
CREATE TABLE IF NOT EXISTS settings (
    key TEXT NOT NULL PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
CREATE INDEX IF NOT EXISTS idx_examples_category_id ON examples(category_id);
CREATE INDEX IF NOT EXISTS idx_categories_name ON categories(name);
"""


def encode_vector(vector: Sequence[float]) -> str:
    """Serialize an embedding for the ``examples.embedding`` column."""
    data = [float(value) for value in vector]
    if not data:
        raise StorageError("Refusing to store an empty embedding.")
    return json.dumps(
        {"v": CODEC_VERSION, "dim": len(data), "data": data},
        separators=(",", ":"),
    )


def decode_vector(raw: str) -> np.ndarray:
    """
    Deserialize a stored embedding.

    Accepts the versioned envelope and the legacy bare JSON array.
    """
    try:
        payload = json.loads(raw)
    except (TypeError, json.JSONDecodeError) as e:
        raise StorageError(f"Stored embedding is not valid JSON: {e}") from e

    if isinstance(payload, list):
        data = payload
    elif isinstance(payload, dict):
        version = payload.get("v")
        if version != CODEC_VERSION:
            raise StorageError(f"Unsupported embedding codec version: {version!r}")
        data = payload.get("data")
        if not isinstance(data, list) or len(data) != payload.get("dim"):
            raise StorageError("Stored embedding does not match its declared dimension.")
    else:
        raise StorageError("Stored embedding has an unknown layout.")

    try:
        return np.asarray(data, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise StorageError(f"Stored embedding is not numeric: {e}") from e


class FreshnessMarker(ABC):
    """Shared timestamp that tells cache instances a newer snapshot exists."""

    @abstractmethod
    def read(self) -> float | None:
        raise NotImplementedError

    @abstractmethod
    def write(self, timestamp: float) -> None:
        raise NotImplementedError


class Storage:
    """SQLite-backed store for categories, examples and settings."""

    def __init__(self, path: str | Path, timeout: float = 30.0):
        self.path = str(path)
        self._timeout = timeout

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, commit on success and always close it."""
        try:
            conn = sqlite3.connect(self.path, timeout=self._timeout)
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open database {self.path}: {e}") from e
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA foreign_keys = ON")
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StorageError(str(e)) from e
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the schema if it does not exist yet."""
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)
        log.debug("Storage initialized", path=self.path)

    # --- Reads ---

    def get_categories(self) -> list[Category]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, name, threshold, description FROM categories ORDER BY name"
            ).fetchall()
        return [
            Category(
                id=row["id"],
                name=row["name"],
                threshold=row["threshold"],
                description=row["description"],
            )
            for row in rows
        ]

    def get_computed_examples(self) -> dict[str, list[ExampleVector]]:
        """
        Return every computed example grouped by category name.

        Rows whose embedding cannot be decoded are left out of the result and
        cleared, so they count as uncomputed and the recomputer embeds them
        again.
        """
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT c.name AS category_name, e.id, e.text, e.embedding
                FROM examples e
                JOIN categories c ON e.category_id = c.id
                WHERE e.embedding IS NOT NULL
                ORDER BY c.name, e.id
                """
            ).fetchall()

        grouped: dict[str, list[ExampleVector]] = {}
        undecodable = []
        for row in rows:
            try:
                vector = decode_vector(row["embedding"])
            except StorageError as e:
                log.warning("Clearing undecodable embedding", example_id=row["id"], error=str(e))
                undecodable.append(row["id"])
                continue
            grouped.setdefault(row["category_name"], []).append(
                ExampleVector(text=row["text"], vector=vector)
            )
        if undecodable:
            self._clear_example_vectors(undecodable)
        return grouped

    def get_uncomputed_examples(self, category_id: int) -> list[PendingExample]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, category_id, text FROM examples
                WHERE category_id = ? AND embedding IS NULL
                ORDER BY id
                """,
                (category_id,),
            ).fetchall()
        return [
            PendingExample(id=row["id"], category_id=row["category_id"], text=row["text"])
            for row in rows
        ]

    def get_status(self) -> EmbeddingStatus:
        """Computed/uncomputed counts per category."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT c.id, c.name,
                       COUNT(e.id) AS total,
                       COUNT(e.embedding) AS computed
                FROM categories c
                LEFT JOIN examples e ON e.category_id = c.id
                GROUP BY c.id, c.name
                ORDER BY c.name
                """
            ).fetchall()
        return EmbeddingStatus(
            categories=tuple(
                CategoryStatus(
                    id=row["id"],
                    name=row["name"],
                    total=row["total"],
                    computed=row["computed"],
                )
                for row in rows
            )
        )

    def get_setting(self, key: str) -> str | None:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    # --- Writes ---

    def advance_setting(self, key: str, value: float) -> None:
        """Store a numeric setting only if it is greater than the current value."""
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO settings (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value, updated_at = CURRENT_TIMESTAMP
                WHERE CAST(excluded.value AS REAL) > CAST(settings.value AS REAL)
                """,
                (key, repr(float(value))),
            )

    def set_example_vector(self, example_id: int, vector: Sequence[float]) -> None:
        encoded = encode_vector(vector)
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE examples SET embedding = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (encoded, example_id),
            )
            if cursor.rowcount == 0:
                raise StorageError(f"Example {example_id} does not exist.")

    def _clear_example_vectors(self, example_ids: Sequence[int]) -> None:
        with self._connect() as conn:
            conn.executemany(
                "UPDATE examples SET embedding = NULL, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                [(example_id,) for example_id in example_ids],
            )

    def add_category(
        self,
        name: str,
        threshold: float | None = None,
        description: str | None = None,
    ) -> Category:
        name = name.strip()
        if not name:
            raise ValueError("Category name must not be empty.")
        if threshold is not None and not 0.0 <= threshold <= 1.0:
            raise ValueError("Category threshold must be between 0 and 1.")
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO categories (name, description, threshold) VALUES (?, ?, ?)",
                (name, description, threshold),
            )
            category_id = cursor.lastrowid
        return Category(id=category_id, name=name, threshold=threshold, description=description)

    def add_example(self, category_id: int, text: str) -> int:
        text = text.strip()
        if not text:
            raise ValueError("Example text must not be empty.")
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO examples (category_id, text) VALUES (?, ?)",
                (category_id, text),
            )
            return cursor.lastrowid

    def import_labels(self, labels: Iterable[dict]) -> dict[str, int]:
        """
        Import categories and examples from label definitions.

        Each label is ``{"name", "description"?, "threshold"?, "examples": [...]}``.
        Existing categories are reused and example texts already present in a
        category are skipped, so importing the same file twice is a no-op.
        Returns ``{"categories": created, "examples": created}``.
        """
        created = {"categories": 0, "examples": 0}
        existing = {category.name: category for category in self.get_categories()}
        for label in labels:
            name = str(label.get("name", "")).strip()
            if not name:
                log.warning("Skipping label without a name")
                continue
            category = existing.get(name)
            if category is None:
                category = self.add_category(
                    name,
                    threshold=label.get("threshold"),
                    description=label.get("description"),
                )
                existing[name] = category
                created["categories"] += 1

            with self._connect() as conn:
                known = {
                    row["text"]
                    for row in conn.execute(
                        "SELECT text FROM examples WHERE category_id = ?", (category.id,)
                    )
                }
            for text in label.get("examples") or []:
                text = str(text).strip()
                if not text or text in known:
                    continue
                self.add_example(category.id, text)
                known.add(text)
                created["examples"] += 1
        log.info("Imported labels", **created)
        return created


class SettingsFreshnessMarker(FreshnessMarker):
    """Freshness marker stored in the ``settings`` table."""

    def __init__(self, storage: Storage, key: str = FRESHNESS_MARKER_KEY):
        self._storage = storage
        self._key = key

    def read(self) -> float | None:
        raw = self._storage.get_setting(self._key)
        if raw is None:
            return None
        try:
            return float(raw)
        except ValueError:
            log.warning("Ignoring malformed freshness marker", value=raw)
            return None

    def write(self, timestamp: float) -> None:
        """Store ``timestamp`` unless the marker already holds a later one."""
        self._storage.advance_setting(self._key, timestamp)
