"""Create the inventory, location and stock movement tables.

Revision ID: 20261019_create_stock_tables
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261019_create_stock_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "role",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(64), nullable=False, unique=True),
        sa.Column("description", sa.String(255)),
    )
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(255), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("api_token", sa.String(128), unique=True),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("role.id")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_table(
        "item",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("sku", sa.String(120), nullable=False, unique=True),
        sa.Column("barcode", sa.String(120)),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("category", sa.String(120)),
        sa.Column("unit", sa.String(32), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_item_category", "item", ["category"])
    op.create_table(
        "location",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column(
            "parent_id",
            sa.Integer(),
            sa.ForeignKey("location.id", ondelete="RESTRICT"),
        ),
        sa.Column("path", sa.String(1024), nullable=False),
        sa.Column("level", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_location_path", "location", ["path"])
    op.create_table(
        "item_location",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "item_id",
            sa.Integer(),
            sa.ForeignKey("item.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "location_id",
            sa.Integer(),
            sa.ForeignKey("location.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("quantity", sa.Numeric(14, 3), nullable=False, server_default="0"),
        sa.Column("min_threshold", sa.Numeric(14, 3)),
        sa.Column("max_threshold", sa.Numeric(14, 3)),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("item_id", "location_id", name="uq_item_location_pair"),
    )
    op.create_table(
        "stock_movement",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("item_id", sa.Integer(), sa.ForeignKey("item.id"), nullable=False),
        sa.Column("location_id", sa.Integer(), sa.ForeignKey("location.id"), nullable=False),
        sa.Column("movement_type", sa.String(32), nullable=False),
        sa.Column("quantity", sa.Numeric(14, 3), nullable=False),
        sa.Column("before_quantity", sa.Numeric(14, 3), nullable=False, server_default="0"),
        sa.Column("after_quantity", sa.Numeric(14, 3), nullable=False, server_default="0"),
        sa.Column("unit_cost", sa.Numeric(12, 2)),
        sa.Column("total_value", sa.Numeric(14, 2)),
        sa.Column("batch_number", sa.String(120)),
        sa.Column("serial_number", sa.String(120)),
        sa.Column("reference_number", sa.String(120)),
        sa.Column("attachment_url", sa.String(1024)),
        sa.Column("reason", sa.String(255), nullable=False),
        sa.Column("notes", sa.Text()),
        sa.Column("status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("transfer_reference", sa.String(64)),
        sa.Column("idempotency_key", sa.String(128), unique=True),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("approved_by", sa.Integer(), sa.ForeignKey("user.id")),
        sa.Column("approved_at", sa.DateTime()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_stock_movement_status", "stock_movement", ["status"])
    op.create_index(
        "ix_stock_movement_transfer_reference", "stock_movement", ["transfer_reference"]
    )
    op.create_index(
        "ix_stock_movement_item_created", "stock_movement", ["item_id", "created_at"]
    )
    op.create_index(
        "ix_stock_movement_status_created", "stock_movement", ["status", "created_at"]
    )


def downgrade() -> None:
    op.drop_index("ix_stock_movement_status_created", table_name="stock_movement")
    op.drop_index("ix_stock_movement_item_created", table_name="stock_movement")
    op.drop_index("ix_stock_movement_transfer_reference", table_name="stock_movement")
    op.drop_index("ix_stock_movement_status", table_name="stock_movement")
    op.drop_table("stock_movement")
    op.drop_table("item_location")
    op.drop_index("ix_location_path", table_name="location")
    op.drop_table("location")
    op.drop_index("ix_item_category", table_name="item")
    op.drop_table("item")
    op.drop_table("user")
    op.drop_table("role")
