"""Collections, polymorphic content and ordered placements.

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

NAMED_ENTITY_TABLES = ("tags", "people", "cameras", "lenses", "locations")

collection_type = sa.Enum("BLOG", "ART_GALLERY", "CLIENT_GALLERY", "PORTFOLIO", name="collection_type")
content_type = sa.Enum("IMAGE", "TEXT", "GIF", "COLLECTION", name="content_type")
display_mode = sa.Enum("CHRONOLOGICAL", "ORDERED", name="display_mode")
text_format = sa.Enum(
    "MARKDOWN", "HTML", "PLAIN", "JS", "PY", "SQL", "JAVA", "TS", "TF", "YML", name="text_format"
)
film_format = sa.Enum("MM_35", "MM_120", name="film_format")


def _timestamps(updated=True):
    columns = [sa.Column("created_at", sa.DateTime(), nullable=False)]
    if updated:
        columns.append(sa.Column("updated_at", sa.DateTime(), nullable=False))
    return columns


def upgrade() -> None:
    for table in NAMED_ENTITY_TABLES:
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("name_key", sa.String(length=255), nullable=False),
            *_timestamps(updated=False),
        )

    op.create_table(
        "film_types",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("name_key", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=255)),
        sa.Column("default_iso", sa.Integer()),
        *_timestamps(updated=False),
    )
    for table in NAMED_ENTITY_TABLES + ("film_types",):
        op.create_index(f"ix_{table}_name_key", table, ["name_key"], unique=True)

    op.create_table(
        "content",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("content_type", content_type, nullable=False),
        sa.Column("title", sa.String(length=255)),
        sa.Column("description", sa.Text()),
        sa.Column("preview_url", sa.String(length=500)),
        *_timestamps(),
    )

    op.create_table(
        "collections",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("type", collection_type, nullable=False),
        sa.Column("title", sa.String(length=100), nullable=False),
        sa.Column("slug", sa.String(length=150), nullable=False),
        sa.Column("description", sa.String(length=500)),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id")),
        sa.Column("collection_date", sa.Date()),
        sa.Column("visible", sa.Boolean(), nullable=False),
        sa.Column("display_mode", display_mode, nullable=False),
        sa.Column("password_hash", sa.String(length=255)),
        sa.Column("cover_image_id", sa.Integer(), sa.ForeignKey("content.id", ondelete="SET NULL")),
        sa.Column("content_per_page", sa.Integer(), nullable=False),
        sa.Column("rows_wide", sa.Integer()),
        sa.Column("content_version", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )
    op.create_index("ix_collections_slug", "collections", ["slug"], unique=True)

    op.create_table(
        "content_image",
        sa.Column("id", sa.Integer(), sa.ForeignKey("content.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("image_url_web", sa.String(length=500)),
        sa.Column("width", sa.Integer()),
        sa.Column("height", sa.Integer()),
        sa.Column("iso", sa.Integer()),
        sa.Column("f_stop", sa.String(length=20)),
        sa.Column("shutter_speed", sa.String(length=20)),
        sa.Column("focal_length", sa.String(length=20)),
        sa.Column("rating", sa.Integer()),
        sa.Column("author", sa.String(length=255)),
        sa.Column("is_film", sa.Boolean(), nullable=False),
        sa.Column("film_format", film_format),
        sa.Column("black_and_white", sa.Boolean(), nullable=False),
        sa.Column("capture_date", sa.Date()),
        sa.Column("camera_id", sa.Integer(), sa.ForeignKey("cameras.id")),
        sa.Column("lens_id", sa.Integer(), sa.ForeignKey("lenses.id")),
        sa.Column("film_type_id", sa.Integer(), sa.ForeignKey("film_types.id")),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("locations.id")),
    )

    op.create_table(
        "content_text",
        sa.Column("id", sa.Integer(), sa.ForeignKey("content.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("format", text_format, nullable=False),
    )

    op.create_table(
        "content_gif",
        sa.Column("id", sa.Integer(), sa.ForeignKey("content.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("gif_url", sa.String(length=500), nullable=False),
        sa.Column("thumbnail_url", sa.String(length=500)),
        sa.Column("width", sa.Integer()),
        sa.Column("height", sa.Integer()),
    )

    op.create_table(
        "content_collection",
        sa.Column("id", sa.Integer(), sa.ForeignKey("content.id", ondelete="CASCADE"), primary_key=True),
        sa.Column(
            "referenced_collection_id",
            sa.Integer(),
            sa.ForeignKey("collections.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
    )

    op.create_table(
        "collection_content",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "collection_id", sa.Integer(), sa.ForeignKey("collections.id", ondelete="CASCADE"), nullable=False
        ),
        sa.Column("content_id", sa.Integer(), sa.ForeignKey("content.id", ondelete="CASCADE"), nullable=False),
        sa.Column("order_index", sa.Integer(), nullable=False),
        sa.Column("visible", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("collection_id", "content_id", name="uq_collection_content"),
    )
    op.create_index("ix_collection_content_collection_id", "collection_content", ["collection_id"])
    op.create_index("ix_collection_content_content_id", "collection_content", ["content_id"])
    op.create_index("ix_collection_content_order", "collection_content", ["collection_id", "order_index"])

    for parent, parent_table, entity_column, entity_table in (
        ("collection", "collections", "tag_id", "tags"),
        ("collection", "collections", "person_id", "people"),
        ("content", "content", "tag_id", "tags"),
        ("content", "content", "person_id", "people"),
    ):
        op.create_table(
            f"{parent}_{entity_table}",
            sa.Column(
                f"{parent}_id",
                sa.Integer(),
                sa.ForeignKey(f"{parent_table}.id", ondelete="CASCADE"),
                primary_key=True,
            ),
            sa.Column(entity_column, sa.Integer(), sa.ForeignKey(f"{entity_table}.id"), primary_key=True),
        )


def downgrade() -> None:
    for table in ("content_people", "content_tags", "collection_people", "collection_tags"):
        op.drop_table(table)
    op.drop_index("ix_collection_content_order", table_name="collection_content")
    op.drop_index("ix_collection_content_content_id", table_name="collection_content")
    op.drop_index("ix_collection_content_collection_id", table_name="collection_content")
    op.drop_table("collection_content")
    for table in ("content_collection", "content_gif", "content_text", "content_image"):
        op.drop_table(table)
    op.drop_index("ix_collections_slug", table_name="collections")
    op.drop_table("collections")
    op.drop_table("content")
    for table in NAMED_ENTITY_TABLES + ("film_types",):
        op.drop_index(f"ix_{table}_name_key", table_name=table)
    op.drop_table("film_types")
    for table in reversed(NAMED_ENTITY_TABLES):
        op.drop_table(table)
    for enum in (film_format, text_format, display_mode, content_type, collection_type):
        enum.drop(op.get_bind(), checkfirst=True)
