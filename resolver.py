"""
Existing-or-new resolution of named metadata entities.
"""

import logging
from typing import Iterable, List, Optional, Set

from sqlalchemy import select

from errors import Conflict, InvalidArgument, NotFound
from models import db, Camera, FilmType, Lens, Location, Person, Tag
from utils import config_value, name_key

logger = logging.getLogger(__name__)

RESOLVABLE_MODELS = {
    'tag': Tag,
    'person': Person,
    'camera': Camera,
    'lens': Lens,
    'location': Location,
    'film_type': FilmType,
}


class EntityResolver:
    """
    Resolve names and ids of one entity type inside the current transaction.

    Names match case-insensitively; a new row keeps the spelling it was first
    referenced with. Newly created entities are appended to ``created`` so
    callers can report them.
    """

    def __init__(self, model: type, created: Optional[List] = None) -> None:
        self.model = model
        self.created = created if created is not None else []

    @property
    def label(self) -> str:
        return self.model.__name__

    def _canonical(self, name: str) -> str:
        canonical = name.strip() if isinstance(name, str) else ""
        if not canonical:
            raise InvalidArgument(f"{self.label} name cannot be blank")
        max_length = int(config_value("ENTITY_NAME_MAX_LENGTH", 255))
        if len(canonical) > max_length:
            raise InvalidArgument(f"{self.label} name cannot exceed {max_length} characters")
        return canonical

    def find_by_name(self, name: str):
        """Return the entity whose name matches case-insensitively, or None."""
        stmt = select(self.model).where(self.model.name_key == name_key(name))
        return db.session.execute(stmt).scalars().first()

    def resolve(self, name: str, **attributes) -> int:
        """Return the id of the entity called ``name``, creating it if needed."""
        canonical = self._canonical(name)
        existing = self.find_by_name(canonical)
        if existing is not None:
            return existing.id
        return self._create(canonical, **attributes).id

    def create(self, name: str, **attributes):
        """
        Create an entity explicitly.

        Raises:
            Conflict: if an entity with the same name (case-insensitive) exists
        """
        canonical = self._canonical(name)
        if self.find_by_name(canonical) is not None:
            raise Conflict(f"{self.label} already exists: {canonical}")
        return self._create(canonical, **attributes)

    def _create(self, canonical: str, **attributes):
        entity = self.model(name=canonical, **attributes)
        db.session.add(entity)
        db.session.flush()
        self.created.append(entity)
        logger.info(f"Created new {self.label.lower()}: {canonical} (id={entity.id})")
        return entity

    def require(self, ids: Iterable[int]) -> Set[int]:
        """
        Ensure every id exists.

        Raises:
            NotFound: listing the ids that do not exist
        """
        wanted = set(ids or ())
        if not wanted:
            return wanted
        found = set(
            db.session.execute(select(self.model.id).where(self.model.id.in_(wanted))).scalars()
        )
        missing = sorted(wanted - found)
        if missing:
            raise NotFound(f"{self.label} not found: {missing}", {'missing_ids': missing})
        return wanted


def resolver_for(kind: str, created: Optional[List] = None) -> EntityResolver:
    """Build a resolver for an entity kind such as ``tag`` or ``camera``."""
    try:
        model = RESOLVABLE_MODELS[kind]
    except KeyError:
        raise InvalidArgument(f"Unknown entity kind: {kind}") from None
    return EntityResolver(model, created)
