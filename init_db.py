"""
Database initialization and maintenance utilities.

Use this script to:
1. Initialize a fresh database
2. Show statistics
3. Check (and optionally repair) the ordering of every collection
"""

import sys

from dotenv import load_dotenv
from sqlalchemy import func, select

from app import create_app
from models import db, Collection, CollectionContent, Content, Tag, Person
from ordering import OrderIndexAllocator, bump_content_version, is_dense


def init_database():
    """Initialize a fresh database."""
    app = create_app()

    with app.app_context():
        db.create_all()
        print("✓ Database initialized successfully!")
        print(f"✓ Database location: {app.config['SQLALCHEMY_DATABASE_URI']}")


def clear_database():
    """Clear all data from database (WARNING: This cannot be undone!)."""
    app = create_app()

    with app.app_context():
        response = input("⚠️  This will delete ALL collections and content! Type 'yes' to confirm: ")
        if response.lower() == 'yes':
            db.drop_all()
            db.create_all()
            print("✓ Database cleared!")
        else:
            print("✗ Cancelled.")


def show_statistics():
    """Display database statistics."""
    app = create_app()

    with app.app_context():
        collection_count = db.session.execute(select(func.count(Collection.id))).scalar()
        content_count = db.session.execute(select(func.count(Content.id))).scalar()
        placement_count = db.session.execute(select(func.count(CollectionContent.id))).scalar()
        by_type = db.session.execute(
            select(Content.content_type, func.count(Content.id)).group_by(Content.content_type)
        ).all()

        print("\n" + "=" * 50)
        print("DATABASE STATISTICS")
        print("=" * 50)
        print(f"Collections: {collection_count}")
        print(f"Content: {content_count}")
        for content_type, count in by_type:
            print(f"  {content_type.name.title()}: {count}")
        print(f"Placements: {placement_count}")
        if collection_count > 0:
            print(f"Average Placements per Collection: {placement_count / collection_count:.1f}")
        print(f"Tags: {db.session.execute(select(func.count(Tag.id))).scalar()}")
        print(f"People: {db.session.execute(select(func.count(Person.id))).scalar()}")
        print("=" * 50 + "\n")


def find_broken_collections():
    """Return ids of collections whose order indices are not 0..n-1."""
    rows = db.session.execute(
        select(CollectionContent.collection_id, CollectionContent.order_index)
    ).all()
    indices = {}
    for collection_id, order_index in rows:
        indices.setdefault(collection_id, []).append(order_index)
    return sorted(collection_id for collection_id, values in indices.items() if not is_dense(values))


def check_ordering(repair: bool = False):
    """Report collections with gaps or duplicate indices; compact them with --repair."""
    app = create_app()

    with app.app_context():
        broken = find_broken_collections()
        if not broken:
            print("✓ Every collection is densely ordered.")
            return 0

        print(f"✗ {len(broken)} collections have gaps or duplicates: {broken}")
        if not repair:
            return 1

        allocator = OrderIndexAllocator()
        try:
            for collection_id in broken:
                changed = allocator.compact(collection_id)
                bump_content_version(db.session.get(Collection, collection_id))
                print(f"  ✓ Collection {collection_id}: {changed} rows renumbered")
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            print(f"✗ Repair failed: {str(e)}")
            return 1
        print("✓ Repair complete!")
        return 0


if __name__ == '__main__':
    load_dotenv()

    if len(sys.argv) > 1:
        command = sys.argv[1]

        if command == 'init':
            init_database()
        elif command == 'clear':
            clear_database()
        elif command == 'stats':
            show_statistics()
        elif command == 'check':
            sys.exit(check_ordering(repair='--repair' in sys.argv[2:]))
        else:
            print("Usage:")
            print("  python init_db.py init              - Initialize database")
            print("  python init_db.py stats             - Show database statistics")
            print("  python init_db.py check [--repair]  - Verify collection ordering")
            print("  python init_db.py clear             - Clear all data (WARNING!)")
    else:
        print("Database Utilities")
        print("-" * 50)
        init_database()
        show_statistics()
