"""SQLite-backed knowledge graph storage.

Entities are keyed by a globally unique ``canonical_id`` and receive an
integer surrogate ``id`` on first insert. Relationships reference those
surrogate ids and are upserted idempotently on
``(source_id, target_id, relation_type)``.

An FTS5 table mirrors entity names through triggers so the storage can
serve as the default lexical backend for hybrid retrieval.

Writers must be serialized: hold ``storage.write_lock`` for the duration
of any multi-step mutation (reindex, entity resolution).
"""

from __future__ import annotations

import hashlib
import json
import re
import sqlite3
import threading
from collections import deque
from collections.abc import Iterable
from typing import Any, Literal

import structlog

from plangraph.errors import EntityNotFoundError, StorageError
from plangraph.models.entities import (
    Entity,
    EntityType,
    GraphStats,
    Relationship,
    RelationType,
    utc_now_iso,
)

log = structlog.get_logger()

Direction = Literal["outgoing", "incoming", "both"]

LAST_INDEXED_KEY = "last_indexed"
MAX_PATH_DEPTH = 10
MAX_PATHS = 1000

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS entities (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  type TEXT NOT NULL,
  canonical_id TEXT NOT NULL UNIQUE,
  name TEXT NOT NULL,
  source_path TEXT,
  content_hash TEXT,
  metadata TEXT DEFAULT '{}',
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS relationships (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  source_id INTEGER NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
  target_id INTEGER NOT NULL REFERENCES entities(id) ON DELETE CASCADE,
  relation_type TEXT NOT NULL,
  confidence REAL DEFAULT 1.0,
  metadata TEXT DEFAULT '{}',
  created_at TEXT NOT NULL,
  UNIQUE(source_id, target_id, relation_type)
);

CREATE INDEX IF NOT EXISTS idx_entities_type ON entities(type);
CREATE INDEX IF NOT EXISTS idx_entities_source ON entities(source_path);
CREATE INDEX IF NOT EXISTS idx_rel_source ON relationships(source_id);
CREATE INDEX IF NOT EXISTS idx_rel_target ON relationships(target_id);
CREATE INDEX IF NOT EXISTS idx_rel_type ON relationships(relation_type);

CREATE VIRTUAL TABLE IF NOT EXISTS entities_fts USING fts5(
  canonical_id,
  name,
  content='entities',
  content_rowid='id'
);

CREATE TRIGGER IF NOT EXISTS entities_ai AFTER INSERT ON entities BEGIN
  INSERT INTO entities_fts(rowid, canonical_id, name)
  VALUES (new.id, new.canonical_id, new.name);
END;

CREATE TRIGGER IF NOT EXISTS entities_ad AFTER DELETE ON entities BEGIN
  INSERT INTO entities_fts(entities_fts, rowid, canonical_id, name)
  VALUES ('delete', old.id, old.canonical_id, old.name);
END;

CREATE TRIGGER IF NOT EXISTS entities_au AFTER UPDATE ON entities BEGIN
  INSERT INTO entities_fts(entities_fts, rowid, canonical_id, name)
  VALUES ('delete', old.id, old.canonical_id, old.name);
  INSERT INTO entities_fts(rowid, canonical_id, name)
  VALUES (new.id, new.canonical_id, new.name);
END;

CREATE TABLE IF NOT EXISTS graph_meta (
  key TEXT PRIMARY KEY,
  value TEXT,
  updated_at TEXT NOT NULL
);
"""

_UPSERT_ENTITY_SQL = """
INSERT INTO entities (
  type, canonical_id, name, source_path, content_hash, metadata, created_at, updated_at
)
VALUES (
  :type, :canonical_id, :name, :source_path, :content_hash, :metadata, :created_at, :updated_at
)
ON CONFLICT(canonical_id) DO UPDATE SET
  type = excluded.type,
  name = excluded.name,
  source_path = excluded.source_path,
  content_hash = excluded.content_hash,
  metadata = excluded.metadata,
  updated_at = excluded.updated_at
"""

_UPSERT_RELATIONSHIP_SQL = """
INSERT INTO relationships (
  source_id, target_id, relation_type, confidence, metadata, created_at
)
VALUES (:source_id, :target_id, :relation_type, :confidence, :metadata, :created_at)
ON CONFLICT(source_id, target_id, relation_type) DO UPDATE SET
  confidence = excluded.confidence,
  metadata = excluded.metadata
"""

_FTS_TOKEN = re.compile(r"\w+", re.UNICODE)


def _parse_metadata(value: str | dict[str, Any] | None) -> dict[str, Any]:
    if not value:
        return {}
    if isinstance(value, dict):
        return value
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError as e:
        log.warning("metadata_parse_failed", error=str(e))
        return {}
    return parsed if isinstance(parsed, dict) else {}


def _dump_metadata(metadata: dict[str, Any] | None) -> str:
    return json.dumps(metadata or {}, default=str, sort_keys=True)


def _normalize_timestamp(value: str | None, fallback: str) -> str:
    return value if value and value.strip() else fallback


def _entity_from_row(row: sqlite3.Row) -> Entity:
    return Entity(
        id=row["id"],
        canonical_id=row["canonical_id"],
        type=row["type"],
        name=row["name"],
        source_path=row["source_path"],
        content_hash=row["content_hash"],
        metadata=_parse_metadata(row["metadata"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _relationship_from_row(row: sqlite3.Row) -> Relationship:
    return Relationship(
        id=row["id"],
        source_id=row["source_id"],
        target_id=row["target_id"],
        relation_type=row["relation_type"],
        confidence=row["confidence"],
        metadata=_parse_metadata(row["metadata"]),
        created_at=row["created_at"],
    )


def fts_query(text: str) -> str:
    """Turn free text into a safe FTS5 MATCH expression (quoted terms OR'ed)."""
    terms = [token for token in _FTS_TOKEN.findall(text) if token]
    return " OR ".join(f'"{term}"' for term in terms)


class GraphStorage:
    """Entity/relationship persistence over a SQLite connection."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.executescript(SCHEMA_SQL)
        self.write_lock = threading.RLock()

    @classmethod
    def open(cls, path: str | None = None) -> GraphStorage:
        """Open (or create) a graph database; defaults to ``core_config.db_path``."""
        from plangraph.config import core_config

        db_path = path or core_config.db_path
        conn = sqlite3.connect(db_path, check_same_thread=False)
        log.debug("graph_storage_opened", path=db_path)
        return cls(conn)

    def close(self) -> None:
        """Close the underlying connection."""
        self._conn.close()

    # -------------------------------------------------------------------------
    # Entities
    # -------------------------------------------------------------------------

    def upsert_entity(self, entity: Entity) -> Entity:
        """Insert or update one entity and return the stored row."""
        now = utc_now_iso()
        try:
            with self._conn:
                self._conn.execute(_UPSERT_ENTITY_SQL, self._entity_params(entity, now))
        except sqlite3.DatabaseError as e:
            raise StorageError(
                f"Failed to upsert entity: {entity.canonical_id}",
                details={"canonical_id": entity.canonical_id, "error": str(e)},
            ) from e

        stored = self.get_entity(entity.canonical_id)
        if stored is None:
            raise StorageError(f"Failed to upsert entity: {entity.canonical_id}")
        return stored

    def upsert_entities_bulk(self, entities: Iterable[Entity]) -> int:
        """Upsert many entities in one transaction.

        Returns:
            Number of rows inserted or updated.
        """
        rows = list(entities)
        if not rows:
            return 0

        now = utc_now_iso()
        changes = 0
        try:
            with self._conn:
                for entity in rows:
                    cursor = self._conn.execute(
                        _UPSERT_ENTITY_SQL, self._entity_params(entity, now)
                    )
                    changes += cursor.rowcount
        except sqlite3.DatabaseError as e:
            log.error("upsert_entities_bulk_failed", count=len(rows), error=str(e))
            raise StorageError(
                "Bulk entity upsert failed",
                details={"count": len(rows), "error": str(e)},
            ) from e
        return changes

    def get_entity(self, canonical_id: str, entity_type: str | None = None) -> Entity | None:
        """Look up an entity by canonical id, optionally constrained to a type."""
        if entity_type:
            row = self._conn.execute(
                "SELECT * FROM entities WHERE canonical_id = ? AND type = ?",
                (canonical_id, entity_type),
            ).fetchone()
        else:
            row = self._conn.execute(
                "SELECT * FROM entities WHERE canonical_id = ?", (canonical_id,)
            ).fetchone()
        return _entity_from_row(row) if row else None

    def require_entity(self, canonical_id: str, entity_type: str | None = None) -> Entity:
        """Like ``get_entity`` but for callers that need the entity to exist.

        Raises:
            EntityNotFoundError: If no entity has ``canonical_id``.
        """
        entity = self.get_entity(canonical_id, entity_type)
        if entity is None:
            raise EntityNotFoundError(canonical_id, entity_type)
        return entity

    def get_entity_by_id(self, entity_id: int) -> Entity | None:
        row = self._conn.execute("SELECT * FROM entities WHERE id = ?", (entity_id,)).fetchone()
        return _entity_from_row(row) if row else None

    def get_entities_by_type(self, entity_type: str) -> list[Entity]:
        rows = self._conn.execute(
            "SELECT * FROM entities WHERE type = ? ORDER BY id", (entity_type,)
        ).fetchall()
        return [_entity_from_row(row) for row in rows]

    def get_entities_by_source(self, source_path: str) -> list[Entity]:
        rows = self._conn.execute(
            "SELECT * FROM entities WHERE source_path = ? ORDER BY id", (source_path,)
        ).fetchall()
        return [_entity_from_row(row) for row in rows]

    def resolve_ids(self, canonical_ids: Iterable[str]) -> dict[str, int]:
        """Map canonical ids to surrogate ids; unknown ids are omitted."""
        wanted = list(dict.fromkeys(canonical_ids))
        resolved: dict[str, int] = {}
        # Chunked to stay under SQLite's bound-parameter limit
        for start in range(0, len(wanted), 500):
            chunk = wanted[start : start + 500]
            placeholders = ", ".join("?" for _ in chunk)
            rows = self._conn.execute(
                f"SELECT id, canonical_id FROM entities WHERE canonical_id IN ({placeholders})",
                chunk,
            ).fetchall()
            resolved.update({row["canonical_id"]: row["id"] for row in rows})
        return resolved

    # -------------------------------------------------------------------------
    # Relationships
    # -------------------------------------------------------------------------

    def upsert_relationship(self, rel: Relationship) -> Relationship:
        """Insert or update one relationship and return the stored row."""
        now = utc_now_iso()
        try:
            with self._conn:
                self._conn.execute(_UPSERT_RELATIONSHIP_SQL, self._relationship_params(rel, now))
        except sqlite3.DatabaseError as e:
            raise StorageError(
                f"Failed to upsert relationship: {rel.source_id} -> {rel.target_id} "
                f"({rel.relation_type})",
                details={"error": str(e)},
            ) from e

        row = self._conn.execute(
            "SELECT * FROM relationships "
            "WHERE source_id = ? AND target_id = ? AND relation_type = ?",
            (rel.source_id, rel.target_id, rel.relation_type),
        ).fetchone()
        if row is None:
            raise StorageError(
                f"Failed to upsert relationship: {rel.source_id} -> {rel.target_id}"
            )
        return _relationship_from_row(row)

    def upsert_relationships_bulk(self, rels: Iterable[Relationship]) -> int:
        """Upsert many relationships in one transaction.

        Returns:
            Number of rows inserted or updated.
        """
        rows = list(rels)
        if not rows:
            return 0

        now = utc_now_iso()
        changes = 0
        try:
            with self._conn:
                for rel in rows:
                    cursor = self._conn.execute(
                        _UPSERT_RELATIONSHIP_SQL, self._relationship_params(rel, now)
                    )
                    changes += cursor.rowcount
        except sqlite3.DatabaseError as e:
            log.error("upsert_relationships_bulk_failed", count=len(rows), error=str(e))
            raise StorageError(
                "Bulk relationship upsert failed",
                details={"count": len(rows), "error": str(e)},
            ) from e
        return changes

    def get_relationships(
        self, entity_id: int, direction: Direction = "both"
    ) -> list[Relationship]:
        if direction == "outgoing":
            sql, params = "SELECT * FROM relationships WHERE source_id = ?", (entity_id,)
        elif direction == "incoming":
            sql, params = "SELECT * FROM relationships WHERE target_id = ?", (entity_id,)
        else:
            sql = "SELECT * FROM relationships WHERE source_id = ? OR target_id = ?"
            params = (entity_id, entity_id)
        rows = self._conn.execute(f"{sql} ORDER BY id", params).fetchall()
        return [_relationship_from_row(row) for row in rows]

    def get_relationships_by_type(self, relation_type: str) -> list[Relationship]:
        rows = self._conn.execute(
            "SELECT * FROM relationships WHERE relation_type = ? ORDER BY id", (relation_type,)
        ).fetchall()
        return [_relationship_from_row(row) for row in rows]

    def get_neighbors(
        self,
        entity_id: int,
        relation_type: str | None = None,
        exclude_relation_type: str | None = None,
    ) -> list[Entity]:
        """Entities joined to ``entity_id`` by an edge in either direction.

        ``relation_type`` keeps only edges of that type and
        ``exclude_relation_type`` skips edges of that type. Results follow
        edge insertion order and contain each neighbor once.
        """
        sql = """
            SELECT e.*
            FROM relationships r
            JOIN entities e
              ON e.id = CASE WHEN r.source_id = :id THEN r.target_id ELSE r.source_id END
            WHERE (r.source_id = :id OR r.target_id = :id)
        """
        params: dict[str, Any] = {"id": entity_id}
        if relation_type:
            sql += " AND r.relation_type = :relation_type"
            params["relation_type"] = relation_type
        if exclude_relation_type:
            sql += " AND r.relation_type != :exclude_relation_type"
            params["exclude_relation_type"] = exclude_relation_type
        sql += " ORDER BY r.id"

        neighbors: list[Entity] = []
        seen: set[int] = set()
        for row in self._conn.execute(sql, params).fetchall():
            if row["id"] in seen:
                continue
            seen.add(row["id"])
            neighbors.append(_entity_from_row(row))
        return neighbors

    def get_path(
        self,
        from_id: int,
        to_id: int,
        max_depth: int,
        max_paths: int = 25,
    ) -> list[list[Entity]] | None:
        """Enumerate simple paths between two entities, shortest first.

        Depth is capped at 10 hops and the number of paths at 1000.
        Returns None when either endpoint is missing or no path exists.
        """
        if max_depth < 1:
            return None

        bounded_depth = min(max_depth, MAX_PATH_DEPTH)
        bounded_paths = max(1, min(max_paths, MAX_PATHS))
        start = self.get_entity_by_id(from_id)
        target = self.get_entity_by_id(to_id)
        if start is None or target is None:
            return None
        if from_id == to_id:
            return [[start]]

        results: list[list[Entity]] = []
        queue: deque[list[Entity]] = deque([[start]])
        while queue:
            path = queue.popleft()
            if len(path) - 1 >= bounded_depth:
                continue

            on_path = {node.id for node in path}
            for neighbor in self.get_neighbors(path[-1].id or 0):
                if neighbor.id in on_path:
                    continue
                next_path = [*path, neighbor]
                if neighbor.id == to_id:
                    results.append(next_path)
                    if len(results) >= bounded_paths:
                        return results
                else:
                    queue.append(next_path)

        return results or None

    # -------------------------------------------------------------------------
    # Search, stats, metadata
    # -------------------------------------------------------------------------

    def search_entities(self, query: str, limit: int) -> list[tuple[Entity, float]]:
        """Full-text search over entity names and canonical ids.

        Returns (entity, score) pairs best-first; score is the negated BM25
        rank so that larger is better.
        """
        match = fts_query(query)
        if not match:
            return []

        safe_limit = max(1, min(limit, 1000))
        try:
            rows = self._conn.execute(
                """
                SELECT e.*, bm25(entities_fts) AS bm25_rank
                FROM entities_fts
                JOIN entities e ON e.id = entities_fts.rowid
                WHERE entities_fts MATCH ?
                ORDER BY bm25_rank, e.id
                LIMIT ?
                """,
                (match, safe_limit),
            ).fetchall()
        except sqlite3.OperationalError as e:
            log.warning("search_entities_failed", query=query[:50], error=str(e))
            return []
        return [(_entity_from_row(row), -float(row["bm25_rank"])) for row in rows]

    def get_stats(self) -> GraphStats:
        entity_counts = {str(t): 0 for t in EntityType}
        relation_counts = {str(t): 0 for t in RelationType}

        for row in self._conn.execute(
            "SELECT type, COUNT(*) AS count FROM entities GROUP BY type"
        ).fetchall():
            entity_counts[row["type"]] = row["count"]
        for row in self._conn.execute(
            "SELECT relation_type, COUNT(*) AS count FROM relationships GROUP BY relation_type"
        ).fetchall():
            relation_counts[row["relation_type"]] = row["count"]

        return GraphStats(
            entity_counts=entity_counts,
            relation_counts=relation_counts,
            total_entities=sum(entity_counts.values()),
            total_relations=sum(relation_counts.values()),
            last_indexed=self.last_indexed or "",
        )

    def get_meta(self, key: str) -> str | None:
        row = self._conn.execute("SELECT value FROM graph_meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_meta(self, key: str, value: str) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT OR REPLACE INTO graph_meta (key, value, updated_at) VALUES (?, ?, ?)",
                (key, value, utc_now_iso()),
            )

    @property
    def last_indexed(self) -> str | None:
        return self.get_meta(LAST_INDEXED_KEY)

    def mark_indexed(self, timestamp: str | None = None) -> str:
        """Record the last-indexed time and return it."""
        value = timestamp or utc_now_iso()
        self.set_meta(LAST_INDEXED_KEY, value)
        return value

    # -------------------------------------------------------------------------
    # Parameter helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _entity_params(entity: Entity, now: str) -> dict[str, Any]:
        return {
            "type": str(entity.type),
            "canonical_id": entity.canonical_id,
            "name": entity.name,
            "source_path": entity.source_path,
            "content_hash": entity.content_hash,
            "metadata": _dump_metadata(entity.metadata),
            "created_at": _normalize_timestamp(entity.created_at, now),
            "updated_at": _normalize_timestamp(entity.updated_at, now),
        }

    @staticmethod
    def _relationship_params(rel: Relationship, now: str) -> dict[str, Any]:
        return {
            "source_id": rel.source_id,
            "target_id": rel.target_id,
            "relation_type": str(rel.relation_type),
            "confidence": rel.confidence,
            "metadata": _dump_metadata(rel.metadata),
            "created_at": _normalize_timestamp(rel.created_at, now),
        }


def compute_content_hash(content: str) -> str:
    """SHA-256 hex digest used to detect changed source documents."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def has_changed(storage: GraphStorage, source_path: str, current_hash: str) -> bool:
    """Whether entities extracted from ``source_path`` are missing or stale."""
    existing = storage.get_entities_by_source(source_path)
    if not existing:
        return True
    return any(entity.content_hash != current_hash for entity in existing)
