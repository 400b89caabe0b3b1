#!/usr/bin/env python
"""
Model-level feature test for the Folio engine
Covers collections, polymorphic content, placements and metadata entities
"""

import sys
import os
sys.path.insert(0, os.path.dirname(__file__))

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app import create_app
from models import (
    db,
    Collection,
    CollectionContent,
    CollectionReference,
    CollectionType,
    Content,
    FilmType,
    GifContent,
    ImageContent,
    Location,
    Tag,
    TextContent,
    TextFormat,
)
from utils import generate_text_preview, slugify


def test_collections():
    print("\n=== Testing Collections ===")
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        blog = Collection(type=CollectionType.BLOG, title="Road Trip", slug="road-trip")
        gallery = Collection(type=CollectionType.CLIENT_GALLERY, title="Smith Wedding", slug="smith-wedding")
        gallery.set_password("correct-horse")
        db.session.add_all([blog, gallery])
        db.session.commit()
        print("✓ Created 2 collections")

        assert blog.content_version == 0
        assert blog.content_per_page == 30
        assert not blog.is_password_protected
        assert gallery.is_password_protected
        print("✓ Defaults and password protection")

        data = gallery.to_dict()
        assert data['type'] == 'CLIENT_GALLERY'
        assert data['display_mode'] == 'ORDERED'
        assert 'password_hash' not in data
        print("✓ Serialized without the password hash")
        db.session.remove()
        db.drop_all()


def test_polymorphic_content():
    print("\n=== Testing Content Types ===")
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        film = FilmType(name="Portra 400", display_name="Kodak Portra 400", default_iso=400)
        image = ImageContent(title="Glacier", image_url_web="https://cdn.test/1.jpg", film_type=film, is_film=True)
        body = "A long paragraph about the drive along the south coast " * 4
        text = TextContent(body=body, format=TextFormat.MARKDOWN, description=generate_text_preview(body))
        gif = GifContent(gif_url="https://cdn.test/loop.gif")
        db.session.add_all([image, text, gif])
        db.session.commit()
        print("✓ Created image, text and gif content")

        loaded = db.session.execute(select(Content).order_by(Content.id)).scalars().all()
        assert [type(item) for item in loaded] == [ImageContent, TextContent, GifContent]
        assert loaded[0].to_dict()['film_type']['display_name'] == "Kodak Portra 400"
        assert loaded[1].to_dict()['format'] == "markdown"
        assert text.description.endswith("...")
        print("✓ Polymorphic load returns subclasses")
        db.session.remove()
        db.drop_all()


def test_placements():
    print("\n=== Testing Placements ===")
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        first = Collection(type=CollectionType.PORTFOLIO, title="Best Work", slug="best-work")
        second = Collection(type=CollectionType.BLOG, title="Road Trip", slug="road-trip")
        image = ImageContent(title="Shared")
        db.session.add_all([first, second, image])
        db.session.flush()

        db.session.add_all([
            CollectionContent(collection_id=first.id, content_id=image.id, order_index=0),
            CollectionContent(collection_id=second.id, content_id=image.id, order_index=0, visible=False),
        ])
        db.session.commit()
        print("✓ Same content placed in 2 collections")

        placements = db.session.execute(
            select(CollectionContent).where(CollectionContent.content_id == image.id)
        ).scalars().all()
        assert {(p.collection_id, p.visible) for p in placements} == {(first.id, True), (second.id, False)}
        assert first.entries[0].to_content_dict()['title'] == "Shared"
        print("✓ Visibility is per collection")

        db.session.add(CollectionContent(collection_id=first.id, content_id=image.id, order_index=1))
        try:
            db.session.commit()
            raise AssertionError("duplicate placement accepted")
        except IntegrityError:
            db.session.rollback()
        print("✓ Duplicate placement rejected")
        db.session.remove()
        db.drop_all()


def test_metadata_and_references():
    print("\n=== Testing Metadata ===")
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        parent = Collection(type=CollectionType.PORTFOLIO, title="All Trips", slug="all-trips")
        child = Collection(type=CollectionType.BLOG, title="Road Trip", slug="road-trip", location=Location(name="Vik"))
        child.tags = [Tag(name="snow"), Tag(name="aurora")]
        db.session.add_all([parent, child])
        db.session.flush()

        reference = CollectionReference(referenced_collection_id=child.id, title=child.title)
        db.session.add(reference)
        db.session.commit()
        print("✓ Created nested collection reference")

        data = reference.to_dict()
        assert data['slug'] == "road-trip"
        assert data['collection_type'] == "BLOG"
        assert [tag['name'] for tag in child.to_dict()['tags']] == ["aurora", "snow"]
        assert child.to_dict()['location']['name'] == "Vik"
        print("✓ Reference and tag serialization")

        assert slugify("Iceland, Winter 2024!") == "iceland-winter-2024"
        print("✓ Slug helper")
        db.session.remove()
        db.drop_all()


if __name__ == "__main__":
    try:
        test_collections()
        test_polymorphic_content()
        test_placements()
        test_metadata_and_references()

        print("\n" + "="*50)
        print("✅ ALL TESTS PASSED!")
        print("="*50)

    except Exception as e:
        print(f"\n❌ TEST FAILED: {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)
