"""Entity Reference Graph: typed, directed edges between heterogeneous records.

Edges live in a single flat ``entity_references`` table indexed on both ends,
so "what points to or from X" is one query and traversal needs nothing more
than a visited set. Inverse edges are never created implicitly.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections import deque
from dataclasses import dataclass

from intelhub.errors import check_choice
from intelhub.models import ENTITY_TYPES, RELATIONSHIPS, EntityReference, now_iso
from intelhub.storage.repository import new_id

logger = logging.getLogger(__name__)

MAX_QUERY_LIMIT = 500
DIRECTIONS = ("forward", "reverse", "both")


@dataclass
class Hop:
    reference: EntityReference
    entity_type: str  # the entity this edge leads to
    entity_id: str
    depth: int


class ReferenceGraph:
    """Create, query and traverse entity references."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def create_reference(
        self,
        source_type: str,
        source_id: str,
        target_type: str,
        target_id: str,
        relationship: str,
        created_by: str = "agent",
        metadata: dict | None = None,
    ) -> tuple[EntityReference, bool]:
        """Create an edge, or return the existing one if the triple is already linked.

        Returns ``(reference, created)``. A duplicate is not an error: callers
        link work artifacts speculatively and the unique constraint settles
        concurrent inserts of the same edge.
        """
        check_choice("sourceType", source_type, ENTITY_TYPES)
        check_choice("targetType", target_type, ENTITY_TYPES)
        check_choice("relationship", relationship, RELATIONSHIPS)

        ref = EntityReference(
            id=new_id("ref"),
            source_type=source_type,
            source_id=source_id,
            target_type=target_type,
            target_id=target_id,
            relationship=relationship,
            created_by=created_by or "agent",
            created_at=now_iso(),
            metadata=metadata,
        )
        cursor = self._conn.execute(
            """INSERT OR IGNORE INTO entity_references
            (id, source_type, source_id, target_type, target_id, relationship, metadata, created_by, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                ref.id,
                ref.source_type,
                ref.source_id,
                ref.target_type,
                ref.target_id,
                ref.relationship,
                json.dumps(metadata) if metadata else None,
                ref.created_by,
                ref.created_at,
            ),
        )
        self._conn.commit()

        if cursor.rowcount > 0:
            return ref, True

        existing = self.get_link(source_type, source_id, target_type, target_id, relationship)
        logger.debug(
            f"Reference {source_type}:{source_id} -[{relationship}]-> {target_type}:{target_id} already exists"
        )
        return existing, False

    def get_link(
        self,
        source_type: str,
        source_id: str,
        target_type: str,
        target_id: str,
        relationship: str,
    ) -> EntityReference | None:
        row = self._conn.execute(
            """SELECT * FROM entity_references
            WHERE source_type = ? AND source_id = ? AND target_type = ? AND target_id = ? AND relationship = ?""",
            (source_type, source_id, target_type, target_id, relationship),
        ).fetchone()
        return self._row_to_reference(row) if row else None

    def delete_reference(
        self,
        source_type: str,
        source_id: str,
        target_type: str,
        target_id: str,
        relationship: str,
    ) -> bool:
        cursor = self._conn.execute(
            """DELETE FROM entity_references
            WHERE source_type = ? AND source_id = ? AND target_type = ? AND target_id = ? AND relationship = ?""",
            (source_type, source_id, target_type, target_id, relationship),
        )
        self._conn.commit()
        return cursor.rowcount > 0

    def query_references(
        self,
        source_type: str | None = None,
        source_id: str | None = None,
        target_type: str | None = None,
        target_id: str | None = None,
        relationship: str | list[str] | None = None,
        limit: int = 100,
    ) -> list[EntityReference]:
        """Directional query: every given field must match."""
        conditions: list[str] = []
        params: list = []
        for column, value in (
            ("source_type", source_type),
            ("source_id", source_id),
            ("target_type", target_type),
            ("target_id", target_id),
        ):
            if value:
                conditions.append(f"{column} = ?")
                params.append(value)
        self._add_relationship_filter(relationship, conditions, params)
        return self._select(conditions, params, limit)

    def references_for(
        self,
        entity_type: str,
        entity_id: str,
        direction: str = "both",
        relationships: str | list[str] | None = None,
        limit: int = 100,
    ) -> list[EntityReference]:
        """Edges touching an entity: as source (forward), target (reverse) or either."""
        conditions, params = self._entity_condition(entity_type, entity_id, direction)
        self._add_relationship_filter(relationships, conditions, params)
        return self._select(conditions, params, limit)

    def count_references(
        self,
        entity_type: str,
        entity_id: str,
        direction: str = "both",
        relationships: str | list[str] | None = None,
    ) -> int:
        conditions, params = self._entity_condition(entity_type, entity_id, direction)
        self._add_relationship_filter(relationships, conditions, params)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        return self._conn.execute(
            f"SELECT COUNT(*) FROM entity_references {where}", params
        ).fetchone()[0]

    def traverse(self, entity_type: str, entity_id: str, max_depth: int = 1) -> list[Hop]:
        """Breadth-first walk over edges in both directions, up to ``max_depth`` hops.

        Each edge is reported once, together with the entity it reaches and
        that entity's hop count. Every ``(type, id)`` is expanded at most once,
        so cycles terminate.
        """
        visited: set[tuple[str, str]] = set()
        seen_edges: set[str] = set()
        hops: list[Hop] = []
        queue: deque[tuple[str, str, int]] = deque([(entity_type, entity_id, 0)])

        while queue:
            node_type, node_id, depth = queue.popleft()
            if (node_type, node_id) in visited:
                continue
            visited.add((node_type, node_id))
            if depth >= max_depth:
                continue

            conditions, params = self._entity_condition(node_type, node_id, "both")
            for ref in self._select(conditions, params, limit=None):
                next_type, next_id = ref.other_end(node_type, node_id)
                if ref.id not in seen_edges:
                    seen_edges.add(ref.id)
                    hops.append(Hop(ref, next_type, next_id, depth + 1))
                if (next_type, next_id) not in visited:
                    queue.append((next_type, next_id, depth + 1))

        return hops

    def _entity_condition(
        self, entity_type: str, entity_id: str, direction: str
    ) -> tuple[list[str], list]:
        check_choice("direction", direction, DIRECTIONS)
        if direction == "forward":
            return ["(source_type = ? AND source_id = ?)"], [entity_type, entity_id]
        if direction == "reverse":
            return ["(target_type = ? AND target_id = ?)"], [entity_type, entity_id]
        return (
            ["((source_type = ? AND source_id = ?) OR (target_type = ? AND target_id = ?))"],
            [entity_type, entity_id, entity_type, entity_id],
        )

    @staticmethod
    def _add_relationship_filter(
        relationship: str | list[str] | None, conditions: list[str], params: list
    ) -> None:
        if not relationship:
            return
        if isinstance(relationship, str):
            conditions.append("relationship = ?")
            params.append(relationship)
        else:
            conditions.append(f"relationship IN ({', '.join('?' for _ in relationship)})")
            params.extend(relationship)

    def _select(
        self, conditions: list[str], params: list, limit: int | None
    ) -> list[EntityReference]:
        """``limit=None`` returns every matching edge (used by traversal)."""
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        sql = f"SELECT * FROM entity_references {where} ORDER BY created_at DESC, rowid DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params = [*params, max(1, min(limit, MAX_QUERY_LIMIT))]
        rows = self._conn.execute(sql, params).fetchall()
        return [self._row_to_reference(row) for row in rows]

    def _row_to_reference(self, row: sqlite3.Row) -> EntityReference:
        d = dict(row)
        if d.get("metadata"):
            try:
                d["metadata"] = json.loads(d["metadata"])
            except json.JSONDecodeError:
                d["metadata"] = None
        return EntityReference(**d)
