"""Graph reindex pipeline with two-phase id remapping.

Extraction runs per source unit (one plan directory) and numbers its
entities with *local* integer ids that are only unique inside that batch.
Relationships in a batch point at those local ids, and may legitimately
reach entities extracted from another batch. Surrogate ids therefore
cannot be known until every batch's entities are stored, so the pipeline
runs three passes:

1. ``extract``: run the extractor for every source and remember each
   batch's local id -> canonical id map.
2. ``persist_entities``: upsert the entities of all batches.
3. ``persist_relationships``: rewrite every relationship endpoint
   local id -> canonical id -> storage surrogate id (fresh lookup) and
   upsert the result. Relationships with an unresolvable endpoint are
   dropped and reported as warnings; the rest of the batch still lands.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import structlog

from plangraph.errors import ReindexError
from plangraph.graph.storage import GraphStorage, compute_content_hash, has_changed
from plangraph.models.entities import Entity, Relationship

log = structlog.get_logger()

_PLAN_DIR = re.compile(r"^(\d{4})")


@dataclass
class ExtractionBatch:
    """Output of extracting one source unit.

    Attributes:
        source: Identifier of the source unit (usually a plan directory).
        entities: Entities whose ``id`` holds the batch-local id.
        relationships: Relationships whose endpoints are batch-local ids.
        warnings: Non-fatal problems reported by the extractor.
        content: Raw source text. When set, entities whose ``source_path``
            is ``source`` are stamped with its content hash, which lets an
            incremental reindex skip the source while it is unchanged.
    """

    source: str
    entities: list[Entity] = field(default_factory=list)
    relationships: list[Relationship] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    content: str | None = None

    def local_id_map(self) -> dict[int, str]:
        """Map of batch-local id -> canonical id."""
        return {e.id: e.canonical_id for e in self.entities if e.id is not None}


class Extractor(Protocol):
    """Turns a source unit into an extraction batch."""

    def extract(self, source: str) -> ExtractionBatch: ...


@dataclass
class ReindexResult:
    """Summary of a reindex run."""

    sources_processed: int = 0
    sources_skipped: int = 0
    entities_upserted: int = 0
    relationships_upserted: int = 0
    relationships_dropped: int = 0
    warnings: list[str] = field(default_factory=list)
    last_indexed: str = ""


class ReindexPipeline:
    """Stateful three-pass reindex over a set of source units.

    Each pass is a public method so it can be driven and tested on its
    own; ``run`` executes all three in order.

    Usage:
        pipeline = ReindexPipeline(storage, extractor)
        pipeline.extract(find_plan_dirs(plans_path))
        pipeline.persist_entities()
        pipeline.persist_relationships()
    """

    def __init__(
        self, storage: GraphStorage, extractor: Extractor, *, incremental: bool = False
    ) -> None:
        self.storage = storage
        self.extractor = extractor
        self.incremental = incremental
        self.batches: list[ExtractionBatch] = []
        self.local_maps: list[dict[int, str]] = []
        self.result = ReindexResult()
        self._entities_persisted = False

    def extract(self, sources: Iterable[str]) -> list[ExtractionBatch]:
        """Pass 1: extract every source and record its local id map.

        In incremental mode a batch whose content hash matches what is
        already stored for its source is skipped along with its
        relationships.
        """
        for source in sources:
            try:
                batch = self.extractor.extract(source)
            except Exception as e:
                log.warning("extraction_failed", source=source, error=str(e))
                self.result.warnings.append(f"Extraction failed for {source}: {e}")
                continue

            if batch.content is not None:
                digest = compute_content_hash(batch.content)
                if self.incremental and not has_changed(self.storage, batch.source, digest):
                    log.debug("reindex_source_unchanged", source=source)
                    self.result.sources_skipped += 1
                    continue
                batch.entities = [
                    e.model_copy(update={"content_hash": digest})
                    if e.source_path == batch.source
                    else e
                    for e in batch.entities
                ]

            self.batches.append(batch)
            self.local_maps.append(batch.local_id_map())
            self.result.warnings.extend(batch.warnings)
            self.result.sources_processed += 1

        log.debug(
            "reindex_extracted",
            batches=len(self.batches),
            skipped=self.result.sources_skipped,
            entities=sum(len(b.entities) for b in self.batches),
        )
        return self.batches

    def persist_entities(self) -> int:
        """Pass 2: upsert the entities of all batches before any relationship."""
        for batch in self.batches:
            if batch.entities:
                # Local ids must not reach storage as surrogate keys
                stored = [e.model_copy(update={"id": None}) for e in batch.entities]
                self.result.entities_upserted += self.storage.upsert_entities_bulk(stored)

        self._entities_persisted = True
        return self.result.entities_upserted

    def remap_relationships(self) -> list[Relationship]:
        """Rewrite relationship endpoints from local ids to storage surrogate ids.

        Dropped relationships are counted and reported in ``result.warnings``.
        """
        if not self._entities_persisted:
            raise ReindexError("Entities must be persisted before relationships are remapped")

        canonical_ids = {cid for local_map in self.local_maps for cid in local_map.values()}
        surrogate = self.storage.resolve_ids(canonical_ids)

        remapped: list[Relationship] = []
        for batch, local_map in zip(self.batches, self.local_maps, strict=True):
            for rel in batch.relationships:
                source_cid = local_map.get(rel.source_id)
                target_cid = local_map.get(rel.target_id)
                source_id = surrogate.get(source_cid) if source_cid else None
                target_id = surrogate.get(target_cid) if target_cid else None

                if source_id is None or target_id is None:
                    self._drop(batch.source, rel, source_cid, target_cid)
                    continue

                remapped.append(
                    rel.model_copy(
                        update={"id": None, "source_id": source_id, "target_id": target_id}
                    )
                )
        return remapped

    def persist_relationships(self) -> int:
        """Pass 3: remap and upsert every batch's relationships."""
        remapped = self.remap_relationships()
        if remapped:
            self.result.relationships_upserted += self.storage.upsert_relationships_bulk(remapped)
        return self.result.relationships_upserted

    def run(self, sources: Iterable[str]) -> ReindexResult:
        self.extract(sources)
        self.persist_entities()
        self.persist_relationships()
        return self.result

    def _drop(
        self,
        source: str,
        rel: Relationship,
        source_cid: str | None,
        target_cid: str | None,
    ) -> None:
        if source_cid is None or self.storage.get_entity(source_cid) is None:
            missing, local_id, unresolved = "source", rel.source_id, source_cid
        else:
            missing, local_id, unresolved = "target", rel.target_id, target_cid

        self.result.relationships_dropped += 1
        self.result.warnings.append(
            f"{source}: dropped {rel.relation_type} relationship "
            f"{rel.source_id} -> {rel.target_id}; unresolved {missing} "
            f"{unresolved or f'local id {local_id}'}"
        )
        log.warning(
            "relationship_dropped",
            source=source,
            relation_type=rel.relation_type,
            unresolved=missing,
        )


def graph_reindex(
    storage: GraphStorage,
    extractor: Extractor,
    sources: Sequence[str],
    *,
    incremental: bool = False,
) -> ReindexResult:
    """Reindex the graph from ``sources`` and stamp the last-indexed time.

    Holds ``storage.write_lock`` for the whole run; concurrent reindexes or
    entity resolution on the same storage wait for it. With
    ``incremental=True`` sources whose content hash is unchanged are skipped.
    """
    log.info("reindex_start", sources=len(sources), incremental=incremental)
    with storage.write_lock:
        result = ReindexPipeline(storage, extractor, incremental=incremental).run(sources)
        result.last_indexed = storage.mark_indexed()

    log.info(
        "reindex_complete",
        sources=result.sources_processed,
        skipped=result.sources_skipped,
        entities=result.entities_upserted,
        relationships=result.relationships_upserted,
        dropped=result.relationships_dropped,
        warnings=len(result.warnings),
    )
    return result


def find_plan_dirs(plans_path: str | Path, plan_id: str | None = None) -> list[str]:
    """List plan directories (names starting with four digits), sorted.

    Args:
        plans_path: Root directory holding plan directories.
        plan_id: Optional filter; matches the four-digit prefix or any
            substring of the directory name.
    """
    root = Path(plans_path)
    if not root.is_dir():
        return []

    dirs: list[str] = []
    for entry in root.iterdir():
        if not entry.is_dir():
            continue
        match = _PLAN_DIR.match(entry.name)
        if not match:
            continue
        if plan_id and match.group(1) != plan_id and plan_id not in entry.name:
            continue
        dirs.append(str(entry))
    return sorted(dirs)
