"""
Keep/create/remove reconciliation of association sets.

``reconcile`` is pure: it only calls the resolver it is handed, so it can be
exercised without a database. ``engine.reconcile_associations`` is the
transactional wrapper that loads the current set and applies the diff.
"""

from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Iterable, List, Optional, Tuple

from errors import InvalidArgument
from utils import name_key


@dataclass
class AssociationDelta:
    """
    Partial update of a many-to-many association.

    - keep: ids that must be associated. ``None`` means "the current set";
      an explicit list (even empty) replaces it.
    - create: names to resolve to existing entities or create
    - remove: ids to drop; removal always wins
    """

    keep: Optional[List[int]] = None
    create: Optional[List[str]] = None
    remove: Optional[List[int]] = None

    @property
    def is_noop(self) -> bool:
        return self.keep is None and not self.create and not self.remove


@dataclass
class ReferenceUpdate:
    """
    Partial update of an optional single reference (camera, lens, location...).

    - prev: id of an existing entity to use
    - new_value: name of an entity to reuse or create
    - remove: True to clear the reference

    remove takes precedence over new_value, which takes precedence over prev.
    """

    prev: Optional[int] = None
    new_value: Optional[str] = None
    remove: bool = False
    attributes: dict = field(default_factory=dict)

    def as_delta(self) -> AssociationDelta:
        """Express this update as an association delta over a set of size <= 1."""
        if self.remove:
            return AssociationDelta(keep=[])
        if self.new_value is not None:
            return AssociationDelta(keep=[], create=[self.new_value])
        if self.prev is not None:
            return AssociationDelta(keep=[self.prev])
        return AssociationDelta()


@dataclass(frozen=True)
class ReconcileResult:
    """Outcome of a reconciliation: the final set and the diff against current."""

    final: FrozenSet[int]
    to_insert: FrozenSet[int]
    to_delete: FrozenSet[int]
    resolved: Tuple[int, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.to_insert or self.to_delete)


def normalize_names(names: Optional[Iterable[str]]) -> List[str]:
    """
    Trim names and collapse case-insensitive duplicates, keeping the first spelling.

    Raises:
        InvalidArgument: if any name is blank
    """
    normalized = []
    seen = set()
    for raw in names or []:
        name = raw.strip() if isinstance(raw, str) else ""
        if not name:
            raise InvalidArgument("Entity name cannot be blank")
        key = name_key(name)
        if key in seen:
            continue
        seen.add(key)
        normalized.append(name)
    return normalized


def reconcile(
    current: Iterable[int],
    keep: Optional[Iterable[int]],
    create_names: Optional[Iterable[str]],
    remove: Optional[Iterable[int]],
    resolver: Callable[[str], int],
) -> ReconcileResult:
    """
    Compute the final association set for one parent.

    final = (keep or current) | resolve(create_names) - remove

    Args:
        current: ids associated with the parent right now
        keep: ids to keep; None keeps the current set as the baseline
        create_names: names to resolve through ``resolver``
        remove: ids to drop, winning over keep and create
        resolver: maps a canonical name to an existing-or-new entity id

    Returns:
        ReconcileResult with the final set and the rows to insert and delete
    """
    current_ids = frozenset(current)
    names = normalize_names(create_names)
    removed = frozenset(remove or ())
    baseline = current_ids if keep is None else frozenset(keep)

    resolved = tuple(resolver(name) for name in names)
    final = (baseline | frozenset(resolved)) - removed

    return ReconcileResult(
        final=final,
        to_insert=final - current_ids,
        to_delete=current_ids - final,
        resolved=resolved,
    )
