"""
Database models for the Folio content engine.
"""

import enum
from datetime import datetime
from typing import NamedTuple, Optional

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy.orm import validates
from werkzeug.security import generate_password_hash

from utils import name_key as fold_name

db = SQLAlchemy()

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.strftime(TIMESTAMP_FORMAT) if value else None


class CollectionType(enum.Enum):
    BLOG = "Blog"
    ART_GALLERY = "Art Gallery"
    CLIENT_GALLERY = "Client Gallery"
    PORTFOLIO = "Portfolio"


class ContentType(enum.Enum):
    IMAGE = "Image"
    TEXT = "Text"
    GIF = "Gif"
    COLLECTION = "Collection"


class DisplayMode(enum.Enum):
    CHRONOLOGICAL = "chronological"
    ORDERED = "ordered"


class TextFormat(enum.Enum):
    MARKDOWN = "markdown"
    HTML = "html"
    PLAIN = "plain"
    JS = "js"
    PY = "py"
    SQL = "sql"
    JAVA = "java"
    TS = "ts"
    TF = "tf"
    YML = "yml"


class FilmFormat(enum.Enum):
    MM_35 = "35mm"
    MM_120 = "120"


# ============================================================================
# Named metadata entities (created on first reference, never deleted implicitly)
# ============================================================================

class NamedEntityMixin:
    """Columns shared by tags, people, cameras, lenses, locations and film types."""

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    # Case-folded name; lookups match on this so non-ASCII names fold too
    name_key = db.Column(db.String(255), nullable=False, unique=True, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    @validates('name')
    def _sync_name_key(self, key, value):
        self.name_key = fold_name(value)
        return value

    def __repr__(self) -> str:
        return f'<{type(self).__name__} {self.name}>'

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'created_at': _format_timestamp(self.created_at),
        }


class Tag(NamedEntityMixin, db.Model):
    """Model for tagging collections and content."""

    __tablename__ = 'tags'


class Person(NamedEntityMixin, db.Model):
    """Model for people appearing in collections and content."""

    __tablename__ = 'people'


class Camera(NamedEntityMixin, db.Model):
    """Camera body an image was captured with."""

    __tablename__ = 'cameras'


class Lens(NamedEntityMixin, db.Model):
    """Lens an image was captured with."""

    __tablename__ = 'lenses'


class Location(NamedEntityMixin, db.Model):
    """Place a collection or image belongs to."""

    __tablename__ = 'locations'


class FilmType(NamedEntityMixin, db.Model):
    """Film stock used for an analog image."""

    __tablename__ = 'film_types'

    display_name = db.Column(db.String(255))
    default_iso = db.Column(db.Integer)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['display_name'] = self.display_name or self.name
        data['default_iso'] = self.default_iso
        return data


# Association tables for many-to-many relationships
collection_tags = db.Table(
    'collection_tags',
    db.Column('collection_id', db.Integer, db.ForeignKey('collections.id', ondelete='CASCADE'), primary_key=True),
    db.Column('tag_id', db.Integer, db.ForeignKey('tags.id'), primary_key=True)
)

collection_people = db.Table(
    'collection_people',
    db.Column('collection_id', db.Integer, db.ForeignKey('collections.id', ondelete='CASCADE'), primary_key=True),
    db.Column('person_id', db.Integer, db.ForeignKey('people.id'), primary_key=True)
)

content_tags = db.Table(
    'content_tags',
    db.Column('content_id', db.Integer, db.ForeignKey('content.id', ondelete='CASCADE'), primary_key=True),
    db.Column('tag_id', db.Integer, db.ForeignKey('tags.id'), primary_key=True)
)

content_people = db.Table(
    'content_people',
    db.Column('content_id', db.Integer, db.ForeignKey('content.id', ondelete='CASCADE'), primary_key=True),
    db.Column('person_id', db.Integer, db.ForeignKey('people.id'), primary_key=True)
)


# ============================================================================
# Collections
# ============================================================================

class Collection(db.Model):
    """A named, typed container of ordered content."""

    __tablename__ = 'collections'

    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.Enum(CollectionType, name='collection_type'), nullable=False)
    title = db.Column(db.String(100), nullable=False)
    slug = db.Column(db.String(150), nullable=False, unique=True, index=True)
    description = db.Column(db.String(500))
    location_id = db.Column(db.Integer, db.ForeignKey('locations.id'), nullable=True)
    collection_date = db.Column(db.Date)
    visible = db.Column(db.Boolean, nullable=False, default=True)
    display_mode = db.Column(
        db.Enum(DisplayMode, name='display_mode'), nullable=False, default=DisplayMode.ORDERED
    )
    password_hash = db.Column(db.String(255))
    cover_image_id = db.Column(db.Integer, db.ForeignKey('content.id', ondelete='SET NULL'), nullable=True)
    content_per_page = db.Column(db.Integer, nullable=False, default=30)
    rows_wide = db.Column(db.Integer)
    # Incremented by every committed change to this collection's content set
    content_version = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    location = db.relationship('Location', lazy='joined')
    cover_image = db.relationship('Content', foreign_keys=[cover_image_id], lazy='joined', post_update=True)
    tags = db.relationship('Tag', secondary=collection_tags, lazy='selectin', order_by='Tag.name')
    people = db.relationship('Person', secondary=collection_people, lazy='selectin', order_by='Person.name')
    entries = db.relationship(
        'CollectionContent',
        back_populates='collection',
        lazy=True,
        cascade='all, delete-orphan',
        passive_deletes=True,
        order_by='CollectionContent.order_index',
    )

    def __repr__(self) -> str:
        """String representation of Collection."""
        return f'<Collection {self.slug}>'

    @property
    def is_password_protected(self) -> bool:
        return self.password_hash is not None

    def set_password(self, password: Optional[str]) -> None:
        """Hash and set the gallery password; None clears protection."""
        self.password_hash = generate_password_hash(password) if password else None

    def to_dict(self) -> dict:
        """Convert collection to dictionary (without content)."""
        return {
            'id': self.id,
            'type': self.type.name,
            'title': self.title,
            'slug': self.slug,
            'description': self.description,
            'location': self.location.to_dict() if self.location else None,
            'collection_date': self.collection_date.isoformat() if self.collection_date else None,
            'visible': self.visible,
            'display_mode': self.display_mode.name,
            'is_password_protected': self.is_password_protected,
            'cover_image_id': self.cover_image_id,
            'content_per_page': self.content_per_page,
            'rows_wide': self.rows_wide,
            'content_version': self.content_version,
            'tags': [tag.to_dict() for tag in self.tags],
            'people': [person.to_dict() for person in self.people],
            'created_at': _format_timestamp(self.created_at),
            'updated_at': _format_timestamp(self.updated_at),
        }


class CollectionContent(db.Model):
    """Join row carrying collection-local order index and visibility."""

    __tablename__ = 'collection_content'

    id = db.Column(db.Integer, primary_key=True)
    collection_id = db.Column(
        db.Integer, db.ForeignKey('collections.id', ondelete='CASCADE'), nullable=False, index=True
    )
    content_id = db.Column(db.Integer, db.ForeignKey('content.id', ondelete='CASCADE'), nullable=False, index=True)
    order_index = db.Column(db.Integer, nullable=False)
    visible = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    collection = db.relationship('Collection', back_populates='entries')
    content = db.relationship('Content', lazy='joined')

    __table_args__ = (
        db.UniqueConstraint('collection_id', 'content_id', name='uq_collection_content'),
        db.Index('ix_collection_content_order', 'collection_id', 'order_index'),
    )

    def __repr__(self) -> str:
        return f'<CollectionContent {self.collection_id}:{self.content_id}@{self.order_index}>'

    def to_dict(self) -> dict:
        """Relation-local view consumed downstream."""
        return {
            'content_id': self.content_id,
            'collection_id': self.collection_id,
            'order_index': self.order_index,
            'visible': self.visible,
        }

    def to_content_dict(self) -> dict:
        """Content attributes merged with this collection's index and visibility."""
        data = self.content.to_dict()
        data.update(self.to_dict())
        return data


# ============================================================================
# Content (polymorphic, collection-independent)
# ============================================================================

class Content(db.Model):
    """A unit of material that may belong to any number of collections."""

    __tablename__ = 'content'

    id = db.Column(db.Integer, primary_key=True)
    content_type = db.Column(db.Enum(ContentType, name='content_type'), nullable=False)
    title = db.Column(db.String(255))
    description = db.Column(db.Text)
    preview_url = db.Column(db.String(500))
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    tags = db.relationship('Tag', secondary=content_tags, lazy='selectin', order_by='Tag.name')
    people = db.relationship('Person', secondary=content_people, lazy='selectin', order_by='Person.name')

    __mapper_args__ = {
        'polymorphic_on': content_type,
    }

    def __repr__(self) -> str:
        return f'<{type(self).__name__} {self.id}>'

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'content_type': self.content_type.name,
            'title': self.title,
            'description': self.description,
            'preview_url': self.preview_url,
            'tags': [tag.to_dict() for tag in self.tags],
            'people': [person.to_dict() for person in self.people],
            'created_at': _format_timestamp(self.created_at),
            'updated_at': _format_timestamp(self.updated_at),
        }


class ImageContent(Content):
    """Image metadata; the binary lives in object storage."""

    __tablename__ = 'content_image'

    id = db.Column(db.Integer, db.ForeignKey('content.id', ondelete='CASCADE'), primary_key=True)
    image_url_web = db.Column(db.String(500))
    width = db.Column(db.Integer)
    height = db.Column(db.Integer)
    iso = db.Column(db.Integer)
    f_stop = db.Column(db.String(20))
    shutter_speed = db.Column(db.String(20))
    focal_length = db.Column(db.String(20))
    rating = db.Column(db.Integer)
    author = db.Column(db.String(255))
    is_film = db.Column(db.Boolean, nullable=False, default=False)
    film_format = db.Column(db.Enum(FilmFormat, name='film_format'))
    black_and_white = db.Column(db.Boolean, nullable=False, default=False)
    capture_date = db.Column(db.Date)
    camera_id = db.Column(db.Integer, db.ForeignKey('cameras.id'))
    lens_id = db.Column(db.Integer, db.ForeignKey('lenses.id'))
    film_type_id = db.Column(db.Integer, db.ForeignKey('film_types.id'))
    location_id = db.Column(db.Integer, db.ForeignKey('locations.id'))

    camera = db.relationship('Camera', lazy='joined')
    lens = db.relationship('Lens', lazy='joined')
    film_type = db.relationship('FilmType', lazy='joined')
    location = db.relationship('Location', lazy='joined')

    __mapper_args__ = {
        'polymorphic_identity': ContentType.IMAGE,
    }

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            'image_url_web': self.image_url_web,
            'width': self.width,
            'height': self.height,
            'iso': self.iso,
            'f_stop': self.f_stop,
            'shutter_speed': self.shutter_speed,
            'focal_length': self.focal_length,
            'rating': self.rating,
            'author': self.author,
            'is_film': self.is_film,
            'film_format': self.film_format.name if self.film_format else None,
            'black_and_white': self.black_and_white,
            'capture_date': self.capture_date.isoformat() if self.capture_date else None,
            'camera': self.camera.to_dict() if self.camera else None,
            'lens': self.lens.to_dict() if self.lens else None,
            'film_type': self.film_type.to_dict() if self.film_type else None,
            'location': self.location.to_dict() if self.location else None,
        })
        return data


class TextContent(Content):
    """A block of text rendered with the given format."""

    __tablename__ = 'content_text'

    id = db.Column(db.Integer, db.ForeignKey('content.id', ondelete='CASCADE'), primary_key=True)
    body = db.Column(db.Text, nullable=False)
    format = db.Column(db.Enum(TextFormat, name='text_format'), nullable=False, default=TextFormat.PLAIN)

    __mapper_args__ = {
        'polymorphic_identity': ContentType.TEXT,
    }

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['body'] = self.body
        data['format'] = self.format.value if self.format else None
        return data


class GifContent(Content):
    """An embedded animated gif."""

    __tablename__ = 'content_gif'

    id = db.Column(db.Integer, db.ForeignKey('content.id', ondelete='CASCADE'), primary_key=True)
    gif_url = db.Column(db.String(500), nullable=False)
    thumbnail_url = db.Column(db.String(500))
    width = db.Column(db.Integer)
    height = db.Column(db.Integer)

    __mapper_args__ = {
        'polymorphic_identity': ContentType.GIF,
    }

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update({
            'gif_url': self.gif_url,
            'thumbnail_url': self.thumbnail_url,
            'width': self.width,
            'height': self.height,
        })
        return data


class CollectionReference(Content):
    """Content that points at another collection, used for nesting."""

    __tablename__ = 'content_collection'

    id = db.Column(db.Integer, db.ForeignKey('content.id', ondelete='CASCADE'), primary_key=True)
    referenced_collection_id = db.Column(
        db.Integer, db.ForeignKey('collections.id', ondelete='CASCADE'), nullable=False, unique=True
    )

    referenced_collection = db.relationship('Collection', foreign_keys=[referenced_collection_id], lazy='joined')

    __mapper_args__ = {
        'polymorphic_identity': ContentType.COLLECTION,
    }

    def to_dict(self) -> dict:
        data = super().to_dict()
        referenced = self.referenced_collection
        data.update({
            'referenced_collection_id': self.referenced_collection_id,
            'slug': referenced.slug if referenced else None,
            'collection_type': referenced.type.name if referenced else None,
        })
        return data


# ============================================================================
# Relation registry used by the reconciler
# ============================================================================

class Association(NamedTuple):
    """A many-to-many relation between a parent record and a named entity."""

    table: db.Table
    parent_column: str
    entity_column: str
    entity: type


class SingleReference(NamedTuple):
    """An optional foreign key from a parent record to a named entity."""

    parent: type
    column: str
    entity: type


PARENT_MODELS = {
    'collection': Collection,
    'content': Content,
}

ASSOCIATIONS = {
    ('collection', 'tags'): Association(collection_tags, 'collection_id', 'tag_id', Tag),
    ('collection', 'people'): Association(collection_people, 'collection_id', 'person_id', Person),
    ('content', 'tags'): Association(content_tags, 'content_id', 'tag_id', Tag),
    ('content', 'people'): Association(content_people, 'content_id', 'person_id', Person),
}

SINGLE_REFERENCES = {
    ('collection', 'location'): SingleReference(Collection, 'location_id', Location),
    ('content', 'camera'): SingleReference(ImageContent, 'camera_id', Camera),
    ('content', 'lens'): SingleReference(ImageContent, 'lens_id', Lens),
    ('content', 'film_type'): SingleReference(ImageContent, 'film_type_id', FilmType),
    ('content', 'location'): SingleReference(ImageContent, 'location_id', Location),
}
