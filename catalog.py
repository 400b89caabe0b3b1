"""
Catalog operations: collections, content creation and metadata.
"""

import logging
from typing import List, Optional, Union

from sqlalchemy import delete, select

from errors import Conflict, InvalidArgument, NotFound
from forms import CollectionFieldsForm
from models import (
    db,
    Camera,
    Collection,
    CollectionContent,
    CollectionReference,
    CollectionType,
    FilmFormat,
    FilmType,
    GifContent,
    ImageContent,
    Lens,
    Location,
    Person,
    Tag,
    TextFormat,
)
from engine import (
    apply_collection_fields,
    collection_view,
    content_rows,
    coordinator,
    finish_content_change,
    new_text_content,
)
from ordering import lock_collection
from payloads import parse_collection_create, parse_gif_fields, parse_image_fields, parse_text_block
from resolver import resolver_for
from transactions import transactional
from utils import config_value, slugify

logger = logging.getLogger(__name__)

COLLECTION_FIELDS = {field.name for field in CollectionFieldsForm()}


# ============================================================================
# Collections
# ============================================================================

def _slug_taken(slug: str) -> bool:
    return db.session.execute(select(Collection.id).where(Collection.slug == slug)).scalar() is not None


def unique_slug(title: str) -> str:
    """
    Derive a free slug from ``title``, appending ``-1``, ``-2``... on collision.

    Raises:
        InvalidArgument: the title has no usable characters
        Conflict: no free slug within MAX_SLUG_ATTEMPTS
    """
    base = slugify(title)
    min_length = int(config_value("SLUG_MIN_LENGTH", 3))
    if len(base) < min_length:
        raise InvalidArgument(f"Cannot derive a slug of at least {min_length} characters from title: {title!r}")

    base = base[:int(config_value("SLUG_MAX_LENGTH", 150)) - 4].rstrip("-")
    if not _slug_taken(base):
        return base
    max_attempts = int(config_value("MAX_SLUG_ATTEMPTS", 100))
    for attempt in range(1, max_attempts + 1):
        candidate = f"{base}-{attempt}"
        if not _slug_taken(candidate):
            return candidate
    raise Conflict(f"Could not generate a unique slug for {title!r} after {max_attempts} attempts")


@transactional
def create_collection(collection_type: Union[CollectionType, str], title: str, **fields) -> dict:
    """
    Create a collection.

    Args:
        collection_type: CollectionType or its name
        title: 3 to 100 characters; the slug is derived from it unless given
        **fields: any other scalar collection field

    Returns:
        The new collection with its (empty) content list
    """
    unknown = sorted(set(fields) - COLLECTION_FIELDS)
    if unknown:
        raise InvalidArgument(f"Unknown collection fields: {', '.join(unknown)}")
    if isinstance(collection_type, CollectionType):
        collection_type = collection_type.name
    create = parse_collection_create(dict(fields, type=collection_type, title=title))

    values = dict(create.fields)
    slug = values.pop('slug', None)
    if slug is not None and _slug_taken(slug):
        raise Conflict(f"Slug already in use: {slug}", {'slug': slug})

    collection = Collection(
        type=create.type,
        title=create.title,
        slug=slug or unique_slug(create.title),
        content_per_page=int(config_value("DEFAULT_CONTENT_PER_PAGE", 30)),
        content_version=0,
    )
    db.session.add(collection)
    db.session.flush()
    apply_collection_fields(collection, values)
    db.session.flush()

    logger.info(f"Created {collection.type.name} collection {collection.id} ({collection.slug})")
    return collection_view(collection)


def _find_collection(id_or_slug: Union[int, str]) -> Collection:
    if isinstance(id_or_slug, int) and not isinstance(id_or_slug, bool):
        collection = db.session.get(Collection, id_or_slug)
    else:
        collection = db.session.execute(
            select(Collection).where(Collection.slug == str(id_or_slug))
        ).scalars().first()
    if collection is None:
        raise NotFound(f"Collection not found: {id_or_slug}", {'collection': id_or_slug})
    return collection


def get_collection(id_or_slug: Union[int, str]) -> dict:
    """Return a collection by id or slug with its content in order."""
    return collection_view(_find_collection(id_or_slug))


def list_collections(collection_type: Optional[Union[CollectionType, str]] = None, visible_only: bool = False) -> List[dict]:
    """Collections without their content, newest collection date first."""
    stmt = select(Collection).order_by(Collection.collection_date.desc(), Collection.id.desc())
    if collection_type is not None:
        if isinstance(collection_type, str):
            try:
                collection_type = CollectionType[collection_type.upper()]
            except KeyError:
                raise InvalidArgument(f"Unknown collection type: {collection_type}") from None
        stmt = stmt.where(Collection.type == collection_type)
    if visible_only:
        stmt = stmt.where(Collection.visible.is_(True))
    return [collection.to_dict() for collection in db.session.execute(stmt).scalars()]


@transactional
def delete_collection(collection_id: int) -> dict:
    """
    Delete a collection and its membership rows.

    Shared content survives. The reference content that nests this collection
    elsewhere is detached from every parent, which is compacted, and deleted.
    """
    collection = lock_collection(collection_id)
    detached_from = []

    reference = db.session.execute(
        select(CollectionReference).where(CollectionReference.referenced_collection_id == collection_id)
    ).scalars().first()
    if reference is not None:
        parent_ids = sorted(
            db.session.execute(
                select(CollectionContent.collection_id).where(CollectionContent.content_id == reference.id)
            ).scalars()
        )
        for parent_id in parent_ids:
            parent = lock_collection(parent_id)
            coordinator.remove(parent_id, [reference.id])
            finish_content_change(parent, True)
            detached_from.append(parent_id)
        db.session.delete(reference)

    db.session.execute(
        delete(CollectionContent)
        .where(CollectionContent.collection_id == collection_id)
        .execution_options(synchronize_session='fetch')
    )
    db.session.expire(collection, ['entries'])
    db.session.delete(collection)
    db.session.flush()
    logger.info(f"Deleted collection {collection_id}; detached from {detached_from}")
    return {'id': collection_id, 'detached_from': detached_from}


# ============================================================================
# Content creation
# ============================================================================

def _attach(collection_id: int, content, insert_at: Optional[int], expected_version: Optional[int]) -> dict:
    collection = lock_collection(collection_id, expected_version)
    db.session.add(content)
    db.session.flush()
    coordinator.insert(collection_id, [content.id], at=insert_at)
    finish_content_change(collection, True)
    row = next(row for row in content_rows(collection_id) if row['content_id'] == content.id)
    data = content.to_dict()
    data.update(row)
    return data


@transactional
def create_text_content(
    collection_id: int,
    body: str,
    format: Union[TextFormat, str] = TextFormat.PLAIN,
    title: Optional[str] = None,
    insert_at: Optional[int] = None,
    expected_version: Optional[int] = None,
) -> dict:
    """Create a text block and place it in a collection."""
    if isinstance(format, TextFormat):
        format = format.value
    text = new_text_content(parse_text_block({'body': body, 'format': format, 'title': title}))
    data = _attach(collection_id, text, insert_at, expected_version)
    logger.info(f"Created text content {text.id} in collection {collection_id}")
    return data


@transactional
def create_image_content(
    collection_id: int,
    image_url_web: str,
    insert_at: Optional[int] = None,
    expected_version: Optional[int] = None,
    **fields,
) -> dict:
    """Record an uploaded image's metadata and place it in a collection."""
    values = parse_image_fields(dict(fields, image_url_web=image_url_web))
    image = ImageContent(**values)
    data = _attach(collection_id, image, insert_at, expected_version)
    logger.info(f"Created image content {image.id} in collection {collection_id}")
    return data


@transactional
def create_gif_content(
    collection_id: int,
    gif_url: str,
    insert_at: Optional[int] = None,
    expected_version: Optional[int] = None,
    **fields,
) -> dict:
    """Record a gif and place it in a collection."""
    values = parse_gif_fields(dict(fields, gif_url=gif_url))
    gif = GifContent(**values)
    data = _attach(collection_id, gif, insert_at, expected_version)
    logger.info(f"Created gif content {gif.id} in collection {collection_id}")
    return data


# ============================================================================
# Metadata
# ============================================================================

def _create_entity(kind: str, name: str, **attributes) -> dict:
    return resolver_for(kind).create(name, **attributes).to_dict()


@transactional
def create_tag(name: str) -> dict:
    return _create_entity('tag', name)


@transactional
def create_person(name: str) -> dict:
    return _create_entity('person', name)


@transactional
def create_camera(name: str) -> dict:
    return _create_entity('camera', name)


@transactional
def create_lens(name: str) -> dict:
    return _create_entity('lens', name)


@transactional
def create_location(name: str) -> dict:
    return _create_entity('location', name)


@transactional
def create_film_type(name: str, default_iso: Optional[int] = None) -> dict:
    """Create a film stock; ``name`` doubles as its display name."""
    if default_iso is not None and (isinstance(default_iso, bool) or not isinstance(default_iso, int) or default_iso < 1):
        raise InvalidArgument("Default ISO must be a positive integer")
    display_name = name.strip() if isinstance(name, str) else name
    return _create_entity('film_type', name, display_name=display_name, default_iso=default_iso)


def general_metadata() -> dict:
    """Everything an editor needs to fill pickers: entities, enums and collections."""

    def all_of(model):
        return [entity.to_dict() for entity in db.session.execute(select(model).order_by(model.name)).scalars()]

    collections = db.session.execute(select(Collection.id, Collection.title).order_by(Collection.title)).all()
    return {
        'tags': all_of(Tag),
        'people': all_of(Person),
        'cameras': all_of(Camera),
        'lenses': all_of(Lens),
        'film_types': all_of(FilmType),
        'locations': all_of(Location),
        'film_formats': [{'name': fmt.name, 'display_name': fmt.value} for fmt in FilmFormat],
        'text_formats': [fmt.value for fmt in TextFormat],
        'collections': [{'id': row.id, 'title': row.title} for row in collections],
    }
