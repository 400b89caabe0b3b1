"""
Entry points of the ordering and reconciliation engine.

Each public function runs in one transaction (see ``transactions``). The
private helpers never commit, so they compose inside a single call.
"""

import logging
from typing import Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import delete, insert, select

from errors import Conflict, InvalidArgument, NotFound
from models import (
    db,
    ASSOCIATIONS,
    PARENT_MODELS,
    SINGLE_REFERENCES,
    Collection,
    CollectionContent,
    CollectionReference,
    CollectionType,
    Content,
    ImageContent,
    TextContent,
)
from ordering import (
    ContentRef,
    ReorderCoordinator,
    ReorderMove,
    assert_dense,
    bump_content_version,
    load_entries,
    lock_collection,
    resolve_moves,
)
from payloads import (
    COMMON_CONTENT_FIELDS,
    Membership,
    MembershipUpdate,
    parse_association_delta,
    parse_collection_update,
    parse_content_update,
    parse_reference_update,
    parse_reorders,
)
from reconcile import AssociationDelta, ReconcileResult, ReferenceUpdate, reconcile
from resolver import EntityResolver
from transactions import transactional
from utils import generate_text_preview

logger = logging.getLogger(__name__)

coordinator = ReorderCoordinator()


# ============================================================================
# Views
# ============================================================================

def content_rows(collection_id: int) -> List[dict]:
    """Relation rows of a collection as ``{content_id, collection_id, order_index, visible}``."""
    return [entry.to_dict() for entry in load_entries(collection_id)]


def collection_view(collection: Collection) -> dict:
    """Collection attributes plus its content in order."""
    data = collection.to_dict()
    data['content'] = [entry.to_content_dict() for entry in load_entries(collection.id)]
    return data


def content_view(content: Content) -> dict:
    """Content attributes plus the collections it belongs to."""
    data = content.to_dict()
    memberships = db.session.execute(
        select(CollectionContent)
        .where(CollectionContent.content_id == content.id)
        .order_by(CollectionContent.collection_id)
    ).scalars()
    data['collections'] = [entry.to_dict() for entry in memberships]
    return data


# ============================================================================
# Association reconciliation
# ============================================================================

def _load_parent(parent_kind: str, parent_id: int):
    model = PARENT_MODELS.get(parent_kind)
    if model is None:
        raise InvalidArgument(f"Unknown parent kind: {parent_kind}")
    parent = db.session.get(model, parent_id)
    if parent is None:
        raise NotFound(f"{model.__name__} not found with ID: {parent_id}", {'id': parent_id})
    return parent


def _apply_many(parent, parent_kind: str, relation: str, delta: AssociationDelta, created: list) -> ReconcileResult:
    association = ASSOCIATIONS[(parent_kind, relation)]
    table = association.table
    parent_column = table.c[association.parent_column]
    entity_column = table.c[association.entity_column]

    current = set(db.session.execute(select(entity_column).where(parent_column == parent.id)).scalars())
    resolver = EntityResolver(association.entity, created)
    if delta.keep is not None:
        resolver.require(set(delta.keep) - current)

    result = reconcile(current, delta.keep, delta.create, delta.remove, resolver.resolve)

    if result.to_delete:
        db.session.execute(
            delete(table).where(parent_column == parent.id, entity_column.in_(sorted(result.to_delete)))
        )
    if result.to_insert:
        db.session.execute(
            insert(table),
            [
                {association.parent_column: parent.id, association.entity_column: entity_id}
                for entity_id in sorted(result.to_insert)
            ],
        )
    if result.changed:
        db.session.expire(parent, [relation])
        logger.info(
            f"Reconciled {parent_kind} {parent.id} {relation}: "
            f"+{len(result.to_insert)} -{len(result.to_delete)}"
        )
    else:
        logger.debug(f"{parent_kind} {parent.id} {relation} unchanged")
    return result


def _apply_single(parent, parent_kind: str, relation: str, delta, created: list) -> ReconcileResult:
    reference = SINGLE_REFERENCES[(parent_kind, relation)]
    if not isinstance(parent, reference.parent):
        raise InvalidArgument(f"{type(parent).__name__} {parent.id} has no {relation}")

    attributes = {}
    if isinstance(delta, ReferenceUpdate):
        attributes = delta.attributes
        delta = delta.as_delta()

    current_id = getattr(parent, reference.column)
    current = {current_id} if current_id is not None else set()
    resolver = EntityResolver(reference.entity, created)
    if delta.keep:
        resolver.require(delta.keep)

    result = reconcile(
        current, delta.keep, delta.create, delta.remove,
        lambda name: resolver.resolve(name, **attributes),
    )
    if len(result.final) > 1:
        raise InvalidArgument(f"{relation} accepts a single value, got {sorted(result.final)}")

    new_id = next(iter(result.final), None)
    if new_id != current_id:
        setattr(parent, reference.column, new_id)
        db.session.flush()
        db.session.expire(parent, [reference.column[:-len('_id')]])
        logger.info(f"Set {parent_kind} {parent.id} {relation} to {new_id}")
    return result


def apply_association(parent, parent_kind: str, relation: str, delta, created: Optional[list] = None) -> ReconcileResult:
    """Reconcile one relation of an already loaded parent; does not commit."""
    created = created if created is not None else []
    if (parent_kind, relation) in ASSOCIATIONS:
        if isinstance(delta, ReferenceUpdate):
            raise InvalidArgument(f"{relation} takes a keep/create/remove delta")
        return _apply_many(parent, parent_kind, relation, delta, created)
    if (parent_kind, relation) in SINGLE_REFERENCES:
        return _apply_single(parent, parent_kind, relation, delta, created)
    raise InvalidArgument(f"Unknown relation {relation} for {parent_kind}")


@transactional
def reconcile_associations(parent_kind: str, parent_id: int, relation: str, delta) -> set:
    """
    Reconcile a relation of a collection or content against a partial delta.

    Args:
        parent_kind: ``collection`` or ``content``
        parent_id: id of the parent record
        relation: ``tags``, ``people``, ``location``, ``camera``, ``lens`` or ``film_type``
        delta: AssociationDelta, ReferenceUpdate or the equivalent dict

    Returns:
        The final set of associated entity ids
    """
    if isinstance(delta, Mapping):
        if (parent_kind, relation) in SINGLE_REFERENCES:
            delta = parse_reference_update(delta, relation)
        else:
            delta = parse_association_delta(delta, relation)
    if delta is None:
        raise InvalidArgument("A delta is required")
    parent = _load_parent(parent_kind, parent_id)
    return set(apply_association(parent, parent_kind, relation, delta).final)


# ============================================================================
# Content membership
# ============================================================================

def _coerce_moves(moves) -> List[ReorderMove]:
    parsed = []
    for move in moves or []:
        if isinstance(move, ReorderMove):
            parsed.append(move)
        elif isinstance(move, Mapping):
            parsed.extend(parse_reorders([move]))
        elif isinstance(move, (list, tuple)) and len(move) == 2:
            parsed.append(ReorderMove(ContentRef.from_wire(move[0]), move[1]))
        else:
            raise InvalidArgument(f"Unrecognized reorder item: {move!r}")
    return parsed


def _require_content(content_ids: Sequence[int]) -> List[int]:
    wanted = list(content_ids or [])
    for content_id in wanted:
        if isinstance(content_id, bool) or not isinstance(content_id, int):
            raise InvalidArgument(f"Content id must be an integer, got {content_id!r}")
    found = set(db.session.execute(select(Content.id).where(Content.id.in_(wanted))).scalars())
    missing = [content_id for content_id in wanted if content_id not in found]
    if missing:
        raise NotFound(f"Content not found: {missing}", {'missing_ids': missing})
    return wanted


def _reject_self_reference(collection_id: int, content_ids: Iterable[int]) -> None:
    own_reference = db.session.execute(
        select(CollectionReference.id).where(
            CollectionReference.referenced_collection_id == collection_id,
            CollectionReference.id.in_(list(content_ids)),
        )
    ).scalar()
    if own_reference is not None:
        raise InvalidArgument(f"Collection {collection_id} cannot contain itself")


def _membership(collection_id: int, content_id: int) -> Optional[CollectionContent]:
    return db.session.execute(
        select(CollectionContent).where(
            CollectionContent.collection_id == collection_id,
            CollectionContent.content_id == content_id,
        )
    ).scalars().first()


def _update_membership(collection_id: int, content_id: int, entry: Membership) -> bool:
    changed = False
    if entry.visible is not None:
        changed = coordinator.set_visibility(collection_id, content_id, entry.visible) or changed
    if entry.order_index is not None:
        changed = bool(coordinator.reorder(collection_id, [(content_id, entry.order_index)])) or changed
    return changed


def _add_or_update_membership(collection_id: int, content_id: int, entry: Membership) -> bool:
    _reject_self_reference(collection_id, [content_id])
    if _membership(collection_id, content_id) is not None:
        return _update_membership(collection_id, content_id, entry)
    visible = True if entry.visible is None else entry.visible
    coordinator.insert(collection_id, [content_id], at=entry.order_index, visible=visible)
    return True


def finish_content_change(collection: Collection, changed: bool) -> None:
    if changed:
        bump_content_version(collection)
        db.session.expire(collection, ['entries'])
    assert_dense(collection.id)


@transactional
def reorder_content(collection_id: int, moves, expected_version: Optional[int] = None) -> List[dict]:
    """
    Partially reorder a collection.

    Args:
        collection_id: collection to reorder
        moves: ReorderMove items, ``(content_id, new_index)`` pairs or
            ``{content_id, new_index}`` dicts
        expected_version: content version the caller last saw

    Returns:
        The collection's relation rows in their new order
    """
    collection = lock_collection(collection_id, expected_version)
    pairs = resolve_moves(_coerce_moves(moves))
    changed = coordinator.reorder(collection_id, pairs)
    finish_content_change(collection, bool(changed))
    return content_rows(collection_id)


@transactional
def add_content(
    collection_id: int,
    content_ids: Sequence[int],
    insert_at: Optional[int] = None,
    visible: bool = True,
    expected_version: Optional[int] = None,
) -> List[dict]:
    """Add existing content to a collection, appending or inserting at ``insert_at``."""
    collection = lock_collection(collection_id, expected_version)
    wanted = _require_content(content_ids)
    _reject_self_reference(collection_id, wanted)
    rows = coordinator.insert(collection_id, wanted, at=insert_at, visible=visible)
    finish_content_change(collection, bool(rows))
    return content_rows(collection_id)


@transactional
def remove_content(collection_id: int, content_ids: Sequence[int], expected_version: Optional[int] = None) -> List[dict]:
    """Detach content from a collection and close the gaps; content rows survive."""
    collection = lock_collection(collection_id, expected_version)
    removed = coordinator.remove(collection_id, content_ids)
    finish_content_change(collection, bool(removed))
    return content_rows(collection_id)


# ============================================================================
# Collection update
# ============================================================================

def reference_content_for(child: Collection) -> CollectionReference:
    """Find or create the single reference content pointing at ``child``."""
    reference = db.session.execute(
        select(CollectionReference).where(CollectionReference.referenced_collection_id == child.id)
    ).scalars().first()
    if reference is None:
        reference = CollectionReference(
            referenced_collection_id=child.id,
            title=child.title,
            description=child.description,
        )
        db.session.add(reference)
        db.session.flush()
        logger.info(f"Created reference content {reference.id} for collection {child.id}")
    return reference


def _find_reference(collection_id: int) -> Optional[CollectionReference]:
    """Look up the reference content that nests collection ``collection_id``."""
    return db.session.execute(
        select(CollectionReference).where(CollectionReference.referenced_collection_id == collection_id)
    ).scalars().first()


def _child_collection(parent: Collection, child_id: int) -> Collection:
    if child_id == parent.id:
        raise InvalidArgument(f"Collection {parent.id} cannot contain itself")
    child = db.session.get(Collection, child_id)
    if child is None:
        raise NotFound(f"Collection not found with ID: {child_id}", {'collection_id': child_id})
    return child


def _apply_child_collections(collection: Collection, update: MembershipUpdate) -> bool:
    changed = False

    unlink = []
    for child_id in update.remove:
        reference = _find_reference(child_id)
        if reference is not None and _membership(collection.id, reference.id) is not None:
            unlink.append(reference.id)
    if unlink:
        coordinator.remove(collection.id, unlink)
        changed = True

    for entry in update.new_value:
        reference = reference_content_for(_child_collection(collection, entry.collection_id))
        changed = _add_or_update_membership(collection.id, reference.id, entry) or changed

    for entry in update.prev:
        child = _child_collection(collection, entry.collection_id)
        reference = _find_reference(child.id)
        if reference is None or _membership(collection.id, reference.id) is None:
            raise NotFound(
                f"Collection {child.id} is not nested in collection {collection.id}",
                {'collection_id': child.id},
            )
        changed = _update_membership(collection.id, reference.id, entry) or changed

    return changed


def _set_cover_image(collection: Collection, content_id: Optional[int]) -> None:
    if not content_id:
        collection.cover_image = None
        return
    content = db.session.get(Content, content_id)
    if content is None:
        raise NotFound(f"Cover image not found with ID: {content_id}", {'cover_image_id': content_id})
    if not isinstance(content, ImageContent):
        raise InvalidArgument(f"Cover image {content_id} is not an image")
    collection.cover_image = content


def _set_slug(collection: Collection, slug: str) -> None:
    taken = db.session.execute(
        select(Collection.id).where(Collection.slug == slug, Collection.id != collection.id)
    ).scalar()
    if taken is not None:
        raise Conflict(f"Slug already in use: {slug}", {'slug': slug})
    collection.slug = slug


def apply_collection_fields(collection: Collection, fields: Mapping, cleared: Iterable[str] = ()) -> None:
    """Apply validated scalar fields; ``cleared`` names fields set to null."""
    fields = dict(fields)
    if 'type' in fields:
        collection.type = fields.pop('type')
        if collection.type != CollectionType.CLIENT_GALLERY:
            collection.set_password(None)

    for key, value in fields.items():
        if key == 'password':
            if collection.type != CollectionType.CLIENT_GALLERY:
                raise InvalidArgument("Only client galleries can be password protected")
            collection.set_password(value)
        elif key == 'cover_image_id':
            _set_cover_image(collection, value)
        elif key == 'slug':
            _set_slug(collection, value)
        else:
            setattr(collection, key, value)

    for key in cleared:
        if key == 'password':
            collection.set_password(None)
        elif key == 'cover_image_id':
            _set_cover_image(collection, None)
        else:
            setattr(collection, key, None)


def new_text_content(block) -> TextContent:
    """Build (but do not add) the content row for a parsed text block."""
    return TextContent(
        title=block.title,
        body=block.body,
        format=block.format,
        description=generate_text_preview(block.body),
    )


def _create_text_blocks(blocks) -> List[int]:
    created = [new_text_content(block) for block in blocks]
    db.session.add_all(created)
    db.session.flush()
    return [text.id for text in created]


@transactional
def update_collection(collection_id: int, update) -> dict:
    """
    Apply a partial collection update in one transaction.

    Scalars, tags, people and location are applied first, then child
    collections, removals and new text blocks; reorders run last so that
    placeholder ids can name the new blocks.

    Args:
        collection_id: collection to update
        update: CollectionUpdate or the equivalent dict

    Returns:
        The updated collection with its ordered content
    """
    update = parse_collection_update(update)
    collection = lock_collection(collection_id, update.expected_version)
    created_entities = []

    apply_collection_fields(collection, update.fields, update.cleared)
    for relation in ('tags', 'people', 'location'):
        delta = getattr(update, relation)
        if delta is not None:
            apply_association(collection, 'collection', relation, delta, created_entities)

    changed = False
    if update.collections is not None:
        changed = _apply_child_collections(collection, update.collections) or changed

    if update.remove_content:
        coordinator.remove(collection_id, update.remove_content)
        changed = True

    created_ids = []
    if update.new_text_blocks:
        created_ids = _create_text_blocks(update.new_text_blocks)
        coordinator.insert(collection_id, created_ids, at=update.new_text_insert_at)
        changed = True

    if update.reorders:
        pairs = resolve_moves(update.reorders, created_ids)
        changed = bool(coordinator.reorder(collection_id, pairs)) or changed

    db.session.flush()
    finish_content_change(collection, changed)

    logger.info(
        f"Updated collection {collection_id}: fields={sorted(update.fields)} "
        f"created_text={created_ids} new_entities={len(created_entities)}"
    )
    return collection_view(collection)


# ============================================================================
# Content update
# ============================================================================

def _apply_memberships(content: Content, update: MembershipUpdate) -> None:
    touched = sorted(
        {entry.collection_id for entry in update.prev}
        | {entry.collection_id for entry in update.new_value}
        | set(update.remove)
    )
    collections = {collection_id: lock_collection(collection_id) for collection_id in touched}
    changed = set()

    for collection_id in update.remove:
        if _membership(collection_id, content.id) is not None:
            coordinator.remove(collection_id, [content.id])
            changed.add(collection_id)

    for entry in update.new_value:
        if _add_or_update_membership(entry.collection_id, content.id, entry):
            changed.add(entry.collection_id)

    for entry in update.prev:
        if _membership(entry.collection_id, content.id) is None:
            raise NotFound(
                f"Content {content.id} is not in collection {entry.collection_id}",
                {'collection_id': entry.collection_id},
            )
        if _update_membership(entry.collection_id, content.id, entry):
            changed.add(entry.collection_id)

    for collection_id, collection in collections.items():
        finish_content_change(collection, collection_id in changed)


@transactional
def update_content(content_id: int, update) -> dict:
    """
    Apply a partial content update.

    Title and description apply to any content. Image metadata and the
    camera, lens, film type and location references apply to images only;
    tags, people and collection membership apply to any content.

    Returns:
        The content with the collections it belongs to
    """
    update = parse_content_update(update)
    content = db.session.get(Content, content_id)
    if content is None:
        raise NotFound(f"Content not found with ID: {content_id}", {'content_id': content_id})

    image_fields = (set(update.fields) | set(update.cleared)) - COMMON_CONTENT_FIELDS
    image_only = image_fields or any(
        getattr(update, relation) is not None for relation in ('camera', 'lens', 'film_type', 'location')
    )
    if image_only and not isinstance(content, ImageContent):
        raise InvalidArgument(
            f"Content {content_id} is not an image; only title, description, tags, people and collections apply"
        )

    for key, value in update.fields.items():
        setattr(content, key, value)
    for key in update.cleared:
        setattr(content, key, None)

    created_entities = []
    for relation in ('tags', 'people', 'camera', 'lens', 'film_type', 'location'):
        delta = getattr(update, relation)
        if delta is not None:
            apply_association(content, 'content', relation, delta, created_entities)

    if update.collections is not None:
        _apply_memberships(content, update.collections)

    db.session.flush()
    logger.info(f"Updated content {content_id}: fields={sorted(update.fields)} new_entities={len(created_entities)}")
    return content_view(content)
