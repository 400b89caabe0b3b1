"""
Dense ordering of content inside a collection.

The planning functions are pure and work on lists of content ids. The
allocator and coordinator read the current rows inside the caller's
transaction and write every index change for a collection as one UPDATE.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import case, delete, func, select, update

from errors import Conflict, Internal, InvalidArgument, NotFound
from models import db, Collection, CollectionContent

logger = logging.getLogger(__name__)


# ============================================================================
# Content references
# ============================================================================

@dataclass(frozen=True)
class ContentRef:
    """
    Reference to a content row: an existing id, or the n-th item created
    earlier in the same call (0-based).
    """

    content_id: Optional[int] = None
    placeholder: Optional[int] = None

    @classmethod
    def existing(cls, content_id: int) -> "ContentRef":
        return cls(content_id=content_id)

    @classmethod
    def created(cls, position: int) -> "ContentRef":
        return cls(placeholder=position)

    @classmethod
    def from_wire(cls, value) -> "ContentRef":
        """
        Parse a wire id: positive ids are existing content, ``-1`` is the
        first item created in the same request, ``-2`` the second, and so on.
        """
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidArgument(f"Content id must be an integer, got {value!r}")
        if value > 0:
            return cls.existing(value)
        if value < 0:
            return cls.created(-value - 1)
        raise InvalidArgument("Content id 0 is not a valid reference")

    @property
    def is_placeholder(self) -> bool:
        return self.placeholder is not None

    def resolve(self, created_ids: Sequence[int]) -> int:
        """Map this reference to a real content id."""
        if not self.is_placeholder:
            return self.content_id
        if self.placeholder >= len(created_ids):
            raise InvalidArgument(
                f"Placeholder {-(self.placeholder + 1)} does not refer to content created in this request"
            )
        return created_ids[self.placeholder]


@dataclass(frozen=True)
class ReorderMove:
    """Request to place one content item at ``new_index``."""

    ref: ContentRef
    new_index: int


def resolve_moves(moves: Iterable[ReorderMove], created_ids: Sequence[int] = ()) -> List[Tuple[int, int]]:
    """Rewrite placeholder references through the ids created in this call."""
    return [(move.ref.resolve(created_ids), move.new_index) for move in moves]


# ============================================================================
# Pure planning
# ============================================================================

def is_dense(indices: Iterable[int]) -> bool:
    """True when the indices are exactly 0..n-1, each once."""
    ordered = sorted(indices)
    return ordered == list(range(len(ordered)))


def plan_reorder(current: Sequence[int], moves: Sequence[Tuple[int, int]]) -> List[int]:
    """
    Compute the final ordering for a partial reorder.

    Named items land on their target index; unnamed items fill the remaining
    slots in their prior relative order.

    Args:
        current: content ids in current order
        moves: (content_id, new_index) pairs

    Returns:
        Content ids in their new order

    Raises:
        InvalidArgument: out-of-range or duplicate targets, or an item named twice
        NotFound: a content id that is not part of ``current``
    """
    size = len(current)
    members = set(current)
    targets: Dict[int, int] = {}
    taken: Dict[int, int] = {}

    for content_id, new_index in moves:
        if isinstance(new_index, bool) or not isinstance(new_index, int):
            raise InvalidArgument(f"New index for content {content_id} must be an integer")
        if content_id in targets:
            raise InvalidArgument(f"Content {content_id} appears more than once in the reorder request")
        if content_id not in members:
            raise NotFound(f"Content {content_id} is not part of this collection", {'content_id': content_id})
        if new_index < 0 or new_index >= size:
            raise InvalidArgument(
                f"New index {new_index} for content {content_id} is outside [0, {size - 1}]",
                {'content_id': content_id, 'new_index': new_index},
            )
        if new_index in taken:
            raise InvalidArgument(
                f"Contents {taken[new_index]} and {content_id} both target index {new_index}",
                {'new_index': new_index},
            )
        targets[content_id] = new_index
        taken[new_index] = content_id

    slots: List[Optional[int]] = [None] * size
    for content_id, new_index in targets.items():
        slots[new_index] = content_id

    unnamed = iter([content_id for content_id in current if content_id not in targets])
    for position in range(size):
        if slots[position] is None:
            slots[position] = next(unnamed)

    if sorted(slots) != sorted(current):
        raise InvalidArgument("Reorder does not produce a permutation of the collection")
    return slots


def plan_insert(current: Sequence[int], new_ids: Sequence[int], at: Optional[int] = None) -> List[int]:
    """
    Compute the ordering after inserting ``new_ids`` at position ``at``.

    Items at or after ``at`` shift by ``len(new_ids)``; ``None`` appends.
    """
    if at is None:
        at = len(current)
    if isinstance(at, bool) or not isinstance(at, int) or at < 0 or at > len(current):
        raise InvalidArgument(f"Insert position {at} is outside [0, {len(current)}]")
    overlap = set(current) & set(new_ids)
    if overlap:
        raise InvalidArgument(f"Content already in collection: {sorted(overlap)}")
    if len(set(new_ids)) != len(new_ids):
        raise InvalidArgument("Content listed more than once")
    return list(current[:at]) + list(new_ids) + list(current[at:])


def index_changes(ordering: Sequence[int], current: Mapping[int, int]) -> Dict[int, int]:
    """Return {content_id: new_index} for the ids whose index actually changes."""
    return {
        content_id: position
        for position, content_id in enumerate(ordering)
        if content_id in current and current[content_id] != position
    }


# ============================================================================
# Persistence helpers
# ============================================================================

def load_entries(collection_id: int) -> List[CollectionContent]:
    """Fetch the relation rows of a collection in index order."""
    stmt = (
        select(CollectionContent)
        .where(CollectionContent.collection_id == collection_id)
        .order_by(CollectionContent.order_index, CollectionContent.id)
        .execution_options(populate_existing=True)
    )
    return list(db.session.execute(stmt).scalars())


def lock_collection(collection_id: int, expected_version: Optional[int] = None) -> Collection:
    """
    Load a collection for a content-set mutation.

    The row is selected FOR UPDATE where the backend supports it and the
    observed ``content_version`` is what ``bump_content_version`` checks.

    Raises:
        NotFound: unknown collection
        Conflict: ``expected_version`` given and stale
    """
    stmt = (
        select(Collection)
        .where(Collection.id == collection_id)
        .with_for_update(of=Collection)
        .execution_options(populate_existing=True)
    )
    collection = db.session.execute(stmt).scalars().first()
    if collection is None:
        raise NotFound(f"Collection not found with ID: {collection_id}", {'collection_id': collection_id})
    if expected_version is not None and collection.content_version != expected_version:
        raise Conflict(
            f"Collection {collection_id} changed (version {collection.content_version}, expected {expected_version})",
            {'collection_id': collection_id, 'content_version': collection.content_version},
        )
    return collection


def bump_content_version(collection: Collection) -> int:
    """
    Check-and-increment the collection's content version.

    Raises:
        Conflict: another transaction committed a change since the lock was taken
    """
    observed = collection.content_version
    stmt = (
        update(Collection)
        .where(Collection.id == collection.id, Collection.content_version == observed)
        .values(content_version=observed + 1, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        raise Conflict(
            f"Collection {collection.id} was modified concurrently; reload and retry",
            {'collection_id': collection.id},
        )
    db.session.expire(collection, ['content_version', 'updated_at'])
    return observed + 1


def write_indices(collection_id: int, changes: Mapping[int, int]) -> int:
    """Apply {content_id: order_index} for one collection as a single UPDATE."""
    if not changes:
        return 0
    stmt = (
        update(CollectionContent)
        .where(
            CollectionContent.collection_id == collection_id,
            CollectionContent.content_id.in_(list(changes)),
        )
        .values(
            order_index=case(dict(changes), value=CollectionContent.content_id),
            updated_at=datetime.utcnow(),
        )
        .execution_options(synchronize_session='fetch')
    )
    result = db.session.execute(stmt)
    if result.rowcount != len(changes):
        raise Internal(
            f"Expected to reindex {len(changes)} rows in collection {collection_id}, updated {result.rowcount}"
        )
    return len(changes)


def assert_dense(collection_id: int) -> None:
    """Fail the transaction if the collection's indices are not 0..n-1."""
    indices = db.session.execute(
        select(CollectionContent.order_index).where(CollectionContent.collection_id == collection_id)
    ).scalars().all()
    if not is_dense(indices):
        raise Internal(f"Order indices of collection {collection_id} are not contiguous: {sorted(indices)}")


# ============================================================================
# Allocator and coordinator
# ============================================================================

class OrderIndexAllocator:
    """Next-index allocation and compaction for one transaction."""

    def next_index(self, collection_id: int) -> int:
        """Return max(order_index) + 1, or 0 for an empty collection."""
        highest = db.session.execute(
            select(func.max(CollectionContent.order_index)).where(
                CollectionContent.collection_id == collection_id
            )
        ).scalar()
        return 0 if highest is None else highest + 1

    def compact(self, collection_id: int) -> int:
        """
        Renumber a collection to 0..n-1 preserving relative order.

        Returns:
            Number of rows whose index changed
        """
        entries = load_entries(collection_id)
        current = {entry.content_id: entry.order_index for entry in entries}
        changed = write_indices(collection_id, index_changes([e.content_id for e in entries], current))
        if changed:
            logger.debug(f"Compacted collection {collection_id}: {changed} rows renumbered")
        return changed


class ReorderCoordinator:
    """Explicit-target, implicit-shift reordering, insertion and removal."""

    def __init__(self, allocator: Optional[OrderIndexAllocator] = None) -> None:
        self.allocator = allocator or OrderIndexAllocator()

    def reorder(self, collection_id: int, moves: Sequence[Tuple[int, int]]) -> int:
        """
        Apply a partial reorder.

        Validation happens before anything is written; a target identical to
        the current order writes nothing.

        Returns:
            Number of rows whose index changed
        """
        entries = load_entries(collection_id)
        current = {entry.content_id: entry.order_index for entry in entries}
        ordering = plan_reorder([entry.content_id for entry in entries], moves)
        changed = write_indices(collection_id, index_changes(ordering, current))
        logger.info(f"Reordered collection {collection_id}: {len(moves)} moves, {changed} rows changed")
        return changed

    def insert(
        self,
        collection_id: int,
        content_ids: Sequence[int],
        at: Optional[int] = None,
        visible: bool = True,
    ) -> List[CollectionContent]:
        """
        Add content to a collection, appending or inserting at ``at``.

        Returns:
            The new relation rows
        """
        if not content_ids:
            return []
        entries = load_entries(collection_id)
        current = {entry.content_id: entry.order_index for entry in entries}
        ordering = plan_insert([entry.content_id for entry in entries], content_ids, at)

        if at is None:
            start = self.allocator.next_index(collection_id)
            positions = {content_id: start + offset for offset, content_id in enumerate(content_ids)}
        else:
            write_indices(collection_id, index_changes(ordering, current))
            positions = {content_id: ordering.index(content_id) for content_id in content_ids}

        rows = []
        for content_id in content_ids:
            row = CollectionContent(
                collection_id=collection_id,
                content_id=content_id,
                order_index=positions[content_id],
                visible=visible,
            )
            db.session.add(row)
            rows.append(row)
        db.session.flush()
        logger.info(f"Added {len(rows)} items to collection {collection_id} at {'end' if at is None else at}")
        return rows

    def remove(self, collection_id: int, content_ids: Iterable[int]) -> int:
        """
        Detach content from a collection and compact the remainder.

        The content rows themselves are untouched.

        Raises:
            NotFound: any id that is not in the collection
        """
        wanted = list(dict.fromkeys(content_ids or ()))
        if not wanted:
            return 0
        present = set(
            db.session.execute(
                select(CollectionContent.content_id).where(
                    CollectionContent.collection_id == collection_id,
                    CollectionContent.content_id.in_(wanted),
                )
            ).scalars()
        )
        missing = [content_id for content_id in wanted if content_id not in present]
        if missing:
            raise NotFound(
                f"Content not in collection {collection_id}: {missing}",
                {'collection_id': collection_id, 'missing_ids': missing},
            )
        db.session.execute(
            delete(CollectionContent)
            .where(
                CollectionContent.collection_id == collection_id,
                CollectionContent.content_id.in_(wanted),
            )
            .execution_options(synchronize_session='fetch')
        )
        self.allocator.compact(collection_id)
        logger.info(f"Removed {len(wanted)} items from collection {collection_id}")
        return len(wanted)

    def set_visibility(self, collection_id: int, content_id: int, visible: bool) -> bool:
        """Toggle the collection-local visibility flag; returns True if it changed."""
        result = db.session.execute(
            update(CollectionContent)
            .where(
                CollectionContent.collection_id == collection_id,
                CollectionContent.content_id == content_id,
                CollectionContent.visible != bool(visible),
            )
            .values(visible=bool(visible), updated_at=datetime.utcnow())
            .execution_options(synchronize_session='fetch')
        )
        return result.rowcount > 0
