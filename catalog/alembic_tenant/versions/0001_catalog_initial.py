"""initial catalog schema

Revision ID: 0001_catalog_initial
Revises: None
Create Date: 2026-09-28
"""

import sqlalchemy as sa
from alembic import op

revision: str = "0001_catalog_initial"
down_revision: str | None = None
branch_labels: tuple[str, ...] | None = None
depends_on: tuple[str, ...] | None = None

NAMED_TABLES = (
    "categories",
    "food_items",
    "menus",
    "add_on_groups",
    "variation_groups",
    "buffets",
    "combo_meals",
)


def _entity_columns() -> list[sa.Column]:
    """Columns shared by every natural-key catalog table."""

    return [
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False, index=True),
        sa.Column("branch_id", sa.String(), nullable=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("name_key", sa.String(), nullable=False),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "is_active", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
    ]


def _natural_key_index(table: str, *scope: str) -> None:
    live = sa.text("deleted_at IS NULL")
    op.create_index(
        f"uq_{table}_natural_key",
        table,
        [*scope, "name_key"] if scope else ["name_key"],
        unique=True,
        sqlite_where=live,
        postgresql_where=live,
    )


def upgrade() -> None:
    """Create catalog tables, join tables, translations and the outbox."""

    op.create_table(
        "categories",
        *_entity_columns(),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category_type", sa.String(), nullable=False, server_default="food"),
        sa.Column("parent_id", sa.Uuid(), sa.ForeignKey("categories.id"), nullable=True),
    )
    op.create_table(
        "food_items",
        *_entity_columns(),
        sa.Column(
            "category_id", sa.Uuid(), sa.ForeignKey("categories.id"), nullable=False
        ),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("base_price", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("stock_type", sa.String(), nullable=False, server_default="unlimited"),
        sa.Column("stock_quantity", sa.Integer(), nullable=True),
        sa.Column("age_limit", sa.Integer(), nullable=True),
    )
    op.create_table(
        "menus",
        *_entity_columns(),
        sa.Column("menu_type", sa.String(), nullable=False),
    )
    op.create_table(
        "menu_items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False, index=True),
        sa.Column("branch_id", sa.String(), nullable=True),
        sa.Column("menu_type", sa.String(), nullable=False),
        sa.Column(
            "food_item_id", sa.Uuid(), sa.ForeignKey("food_items.id"), nullable=False
        ),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )
    op.create_index(
        "uq_menu_items_assignment",
        "menu_items",
        [
            "tenant_id",
            sa.text("coalesce(branch_id, '')"),
            "menu_type",
            "food_item_id",
        ],
        unique=True,
    )
    op.create_index("ix_menu_items_food_item", "menu_items", ["food_item_id"])
    op.create_table(
        "add_on_groups",
        *_entity_columns(),
        sa.Column(
            "selection_type", sa.String(), nullable=False, server_default="multiple"
        ),
        sa.Column(
            "is_required", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("min_selections", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_selections", sa.Integer(), nullable=True),
        sa.Column("category", sa.String(), nullable=True),
    )
    op.create_table(
        "add_ons",
        *_entity_columns(),
        sa.Column(
            "add_on_group_id",
            sa.Uuid(),
            sa.ForeignKey("add_on_groups.id"),
            nullable=False,
        ),
        sa.Column("price", sa.Numeric(10, 2), nullable=False, server_default="0"),
    )
    op.create_table("variation_groups", *_entity_columns())
    op.create_table(
        "variations",
        *_entity_columns(),
        sa.Column(
            "variation_group_id",
            sa.Uuid(),
            sa.ForeignKey("variation_groups.id"),
            nullable=False,
        ),
        sa.Column("recipe_multiplier", sa.Float(), nullable=False, server_default="1"),
        sa.Column(
            "pricing_adjustment", sa.Numeric(10, 2), nullable=False, server_default="0"
        ),
    )
    op.create_table(
        "buffets",
        *_entity_columns(),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price_per_person", sa.Numeric(10, 2), nullable=False),
        sa.Column("min_persons", sa.Integer(), nullable=True),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column("menu_types", sa.JSON(), nullable=False, server_default="[]"),
    )
    op.create_table(
        "combo_meals",
        *_entity_columns(),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("base_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("food_item_ids", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("menu_types", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("discount_percentage", sa.Numeric(5, 2), nullable=True),
    )
    op.create_table(
        "food_item_labels",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "food_item_id", sa.Uuid(), sa.ForeignKey("food_items.id"), nullable=False
        ),
        sa.Column("label", sa.String(), nullable=False),
    )
    op.create_table(
        "food_item_add_on_groups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "food_item_id", sa.Uuid(), sa.ForeignKey("food_items.id"), nullable=False
        ),
        sa.Column(
            "add_on_group_id",
            sa.Uuid(),
            sa.ForeignKey("add_on_groups.id"),
            nullable=False,
        ),
        sa.UniqueConstraint("food_item_id", "add_on_group_id"),
    )
    op.create_table(
        "translations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=True),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=False),
        sa.Column("field_name", sa.String(), nullable=False),
        sa.Column("language", sa.String(), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column(
            "source_language", sa.String(), nullable=False, server_default="en"
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.UniqueConstraint("entity_type", "entity_id", "field_name", "language"),
    )
    op.create_table(
        "catalog_outbox",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("tenant_id", sa.String(), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="queued"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_catalog_outbox_status", "catalog_outbox", ["status", "id"])

    # expression index, op.create_index only takes plain column names
    for table in NAMED_TABLES:
        op.execute(
            sa.text(
                f"CREATE UNIQUE INDEX uq_{table}_natural_key ON {table} "
                "(tenant_id, coalesce(branch_id, ''), name_key) "
                "WHERE deleted_at IS NULL"
            )
        )
    _natural_key_index("add_ons", "add_on_group_id")
    _natural_key_index("variations", "variation_group_id")


def downgrade() -> None:
    for table in (
        "catalog_outbox",
        "translations",
        "food_item_add_on_groups",
        "food_item_labels",
        "combo_meals",
        "buffets",
        "variations",
        "variation_groups",
        "add_ons",
        "add_on_groups",
        "menu_items",
        "menus",
        "food_items",
        "categories",
    ):
        op.drop_table(table)
