"""
Typed update objects and their parsing from JSON-shaped dicts.

Nested relation updates use the ``{prev, new_value, remove}`` wire shape;
``keep`` and ``create`` are accepted as aliases of ``prev`` and ``new_value``.
Negative content ids in reorder items are placeholders for content created
in the same request (``-1`` is the first new item).
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set

from errors import InvalidArgument
from forms import (
    CollectionFieldsForm,
    GifContentForm,
    ImageFieldsForm,
    TextContentForm,
    validate_fields,
)
from models import CollectionType, DisplayMode, FilmFormat, TextFormat
from ordering import ContentRef, ReorderMove
from reconcile import AssociationDelta, ReferenceUpdate

logger = logging.getLogger(__name__)

NULLABLE_COLLECTION_FIELDS = {'description', 'collection_date', 'password', 'rows_wide', 'cover_image_id'}
COMMON_CONTENT_FIELDS = {'title', 'description'}

NULLABLE_IMAGE_FIELDS = {
    'title', 'description', 'author', 'rating', 'iso', 'f_stop',
    'shutter_speed', 'focal_length', 'film_format', 'capture_date',
}


@dataclass
class Membership:
    """A collection a piece of content belongs to, with its local settings."""

    collection_id: int
    visible: Optional[bool] = None
    order_index: Optional[int] = None


@dataclass
class MembershipUpdate:
    """
    Partial update of collection membership.

    From a collection, the entries and ``remove`` name child collections by
    collection id. From a piece of content, the entries name the collections
    it belongs to.
    """

    prev: List[Membership] = field(default_factory=list)
    new_value: List[Membership] = field(default_factory=list)
    remove: List[int] = field(default_factory=list)


@dataclass
class NewTextBlock:
    body: str
    format: TextFormat = TextFormat.PLAIN
    title: Optional[str] = None


@dataclass
class CollectionUpdate:
    """Partial update of a collection and its content set."""

    fields: Dict[str, Any] = field(default_factory=dict)
    cleared: Set[str] = field(default_factory=set)
    tags: Optional[AssociationDelta] = None
    people: Optional[AssociationDelta] = None
    location: Optional[ReferenceUpdate] = None
    collections: Optional[MembershipUpdate] = None
    remove_content: List[int] = field(default_factory=list)
    new_text_blocks: List[NewTextBlock] = field(default_factory=list)
    new_text_insert_at: Optional[int] = None
    reorders: List[ReorderMove] = field(default_factory=list)
    expected_version: Optional[int] = None


@dataclass
class ContentUpdate:
    """Partial update of a content item's metadata and memberships."""

    fields: Dict[str, Any] = field(default_factory=dict)
    cleared: Set[str] = field(default_factory=set)
    tags: Optional[AssociationDelta] = None
    people: Optional[AssociationDelta] = None
    camera: Optional[ReferenceUpdate] = None
    lens: Optional[ReferenceUpdate] = None
    film_type: Optional[ReferenceUpdate] = None
    location: Optional[ReferenceUpdate] = None
    collections: Optional[MembershipUpdate] = None


@dataclass
class CollectionCreate:
    type: CollectionType
    title: str
    fields: Dict[str, Any] = field(default_factory=dict)


# ============================================================================
# Primitive parsers
# ============================================================================

def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _require_mapping(value, label: str) -> Mapping:
    if not isinstance(value, Mapping):
        raise InvalidArgument(f"{label} must be an object")
    return value


def _int_list(value, label: str) -> List[int]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise InvalidArgument(f"{label} must be a list of ids")
    for item in value:
        if not _is_int(item):
            raise InvalidArgument(f"{label} must contain only integer ids, got {item!r}")
    return list(value)


def _name_list(value, label: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise InvalidArgument(f"{label} must be a list of names")
    for item in value:
        if not isinstance(item, str):
            raise InvalidArgument(f"{label} must contain only names, got {item!r}")
    return list(value)


def _optional_int(value, label: str) -> Optional[int]:
    if value is None:
        return None
    if not _is_int(value):
        raise InvalidArgument(f"{label} must be an integer")
    return value


def _optional_bool(value, label: str) -> Optional[bool]:
    if value is None or isinstance(value, bool):
        return value
    raise InvalidArgument(f"{label} must be true or false")


def _pick(data: Mapping, *keys):
    """Return (present, value) for the first of ``keys`` found in ``data``."""
    for key in keys:
        if key in data:
            return True, data[key]
    return False, None


def _normalize_choice(data: dict, key: str, transform) -> None:
    if isinstance(data.get(key), str):
        data[key] = transform(data[key].strip())


# ============================================================================
# Relation deltas
# ============================================================================

def parse_association_delta(value, label: str) -> Optional[AssociationDelta]:
    """Parse ``{prev|keep, new_value|create, remove}`` for a many-to-many relation."""
    if value is None:
        return None
    data = _require_mapping(value, label)
    has_keep, keep = _pick(data, 'prev', 'keep')
    _, create = _pick(data, 'new_value', 'create')
    return AssociationDelta(
        keep=_int_list(keep, f"{label}.prev") if has_keep and keep is not None else None,
        create=_name_list(create, f"{label}.new_value"),
        remove=_int_list(data.get('remove'), f"{label}.remove"),
    )


def parse_reference_update(value, label: str, **attributes) -> Optional[ReferenceUpdate]:
    """Parse ``{prev, new_value, remove}`` for an optional single reference."""
    if value is None:
        return None
    data = _require_mapping(value, label)
    new_value = data.get('new_value')
    if new_value is not None and not isinstance(new_value, str):
        raise InvalidArgument(f"{label}.new_value must be a name")
    return ReferenceUpdate(
        prev=_optional_int(data.get('prev'), f"{label}.prev"),
        new_value=new_value,
        remove=bool(_optional_bool(data.get('remove'), f"{label}.remove")),
        attributes={key: val for key, val in attributes.items() if val is not None},
    )


def parse_membership(value, label: str) -> Membership:
    data = _require_mapping(value, label)
    collection_id = data.get('collection_id')
    if not _is_int(collection_id):
        raise InvalidArgument(f"{label}.collection_id must be an integer")
    return Membership(
        collection_id=collection_id,
        visible=_optional_bool(data.get('visible'), f"{label}.visible"),
        order_index=_optional_int(data.get('order_index'), f"{label}.order_index"),
    )


def parse_membership_update(value, label: str) -> Optional[MembershipUpdate]:
    if value is None:
        return None
    data = _require_mapping(value, label)
    _, prev = _pick(data, 'prev', 'keep')
    _, new_value = _pick(data, 'new_value', 'create')
    for name, entries in (('prev', prev), ('new_value', new_value)):
        if entries is not None and not isinstance(entries, (list, tuple)):
            raise InvalidArgument(f"{label}.{name} must be a list")
    return MembershipUpdate(
        prev=[parse_membership(item, f"{label}.prev") for item in prev or []],
        new_value=[parse_membership(item, f"{label}.new_value") for item in new_value or []],
        remove=_int_list(data.get('remove'), f"{label}.remove"),
    )


def parse_reorders(value) -> List[ReorderMove]:
    """Parse ``[{content_id, new_index}]``; negative ids are placeholders."""
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise InvalidArgument("reorders must be a list")
    moves = []
    for item in value:
        data = _require_mapping(item, "reorder item")
        has_index, new_index = _pick(data, 'new_index', 'new_order_index')
        if not has_index or not _is_int(new_index):
            raise InvalidArgument("Each reorder item needs an integer new_index")
        moves.append(ReorderMove(ContentRef.from_wire(data.get('content_id')), new_index))
    return moves


# ============================================================================
# Content payloads
# ============================================================================

def parse_text_block(value) -> NewTextBlock:
    """Parse a new text block given as a string or ``{body, format?, title?}``."""
    data = {'body': value} if isinstance(value, str) else dict(_require_mapping(value, "text block"))
    if data.get('format') is None:
        data['format'] = TextFormat.PLAIN.value
    _normalize_choice(data, 'format', str.lower)
    values = validate_fields(TextContentForm, data, required=('body',))
    return NewTextBlock(
        body=values['body'],
        format=TextFormat(values['format']),
        title=values.get('title'),
    )


def parse_gif_fields(data: Mapping) -> dict:
    return validate_fields(GifContentForm, data, required=('gif_url',))


def parse_image_fields(data: Mapping) -> dict:
    data = dict(data)
    _normalize_choice(data, 'film_format', str.upper)
    values = validate_fields(ImageFieldsForm, data)
    if values.get('film_format'):
        values['film_format'] = FilmFormat[values['film_format']]
    return values


def parse_content_update(data) -> ContentUpdate:
    """Parse a partial image update."""
    if isinstance(data, ContentUpdate):
        return data
    data = _require_mapping(data, "Content update")

    film_type = data.get('film_type')
    film_type_attributes = {}
    if isinstance(film_type, Mapping):
        film_type_attributes = {
            'display_name': film_type.get('new_value'),
            'default_iso': _optional_int(film_type.get('default_iso'), "film_type.default_iso"),
        }

    return ContentUpdate(
        fields=parse_image_fields(data),
        cleared={key for key in NULLABLE_IMAGE_FIELDS if key in data and data[key] is None},
        tags=parse_association_delta(data.get('tags'), "tags"),
        people=parse_association_delta(data.get('people'), "people"),
        camera=parse_reference_update(data.get('camera'), "camera"),
        lens=parse_reference_update(data.get('lens'), "lens"),
        film_type=parse_reference_update(film_type, "film_type", **film_type_attributes),
        location=parse_reference_update(data.get('location'), "location"),
        collections=parse_membership_update(data.get('collections'), "collections"),
    )


# ============================================================================
# Collection payloads
# ============================================================================

def parse_collection_fields(data: Mapping) -> dict:
    data = dict(data)
    _normalize_choice(data, 'type', str.upper)
    _normalize_choice(data, 'display_mode', str.upper)
    values = validate_fields(CollectionFieldsForm, data)
    if 'type' in values:
        values['type'] = CollectionType[values['type']]
    if 'display_mode' in values:
        values['display_mode'] = DisplayMode[values['display_mode']]
    return values


def parse_collection_update(data) -> CollectionUpdate:
    """
    Parse a partial collection update.

    Only keys present in ``data`` are applied. ``null`` clears a nullable
    field; ``cover_image_id`` 0 also clears the cover.
    """
    if isinstance(data, CollectionUpdate):
        return data
    data = _require_mapping(data, "Collection update")

    fields = parse_collection_fields(data)
    cleared = {key for key in NULLABLE_COLLECTION_FIELDS if key in data and data[key] is None}
    if fields.get('cover_image_id') == 0:
        del fields['cover_image_id']
        cleared.add('cover_image_id')

    blocks = data.get('new_text_blocks')
    if blocks is not None and not isinstance(blocks, (list, tuple)):
        raise InvalidArgument("new_text_blocks must be a list")

    update = CollectionUpdate(
        fields=fields,
        cleared=cleared,
        tags=parse_association_delta(data.get('tags'), "tags"),
        people=parse_association_delta(data.get('people'), "people"),
        location=parse_reference_update(data.get('location'), "location"),
        collections=parse_membership_update(data.get('collections'), "collections"),
        remove_content=_int_list(data.get('remove_content'), "remove_content"),
        new_text_blocks=[parse_text_block(block) for block in blocks or []],
        new_text_insert_at=_optional_int(data.get('new_text_insert_at'), "new_text_insert_at"),
        reorders=parse_reorders(data.get('reorders')),
        expected_version=_optional_int(data.get('expected_version'), "expected_version"),
    )
    logger.debug(f"Parsed collection update with fields {sorted(fields)}")
    return update


def parse_collection_create(data) -> CollectionCreate:
    """Parse a new collection; ``type`` and ``title`` are required."""
    if isinstance(data, CollectionCreate):
        return data
    data = dict(_require_mapping(data, "Collection"))
    _normalize_choice(data, 'type', str.upper)
    _normalize_choice(data, 'display_mode', str.upper)
    values = validate_fields(CollectionFieldsForm, data, required=('type', 'title'))
    collection_type = CollectionType[values.pop('type')]
    title = values.pop('title')
    if 'display_mode' in values:
        values['display_mode'] = DisplayMode[values['display_mode']]
    if values.get('cover_image_id') == 0:
        del values['cover_image_id']
    return CollectionCreate(type=collection_type, title=title, fields=values)
