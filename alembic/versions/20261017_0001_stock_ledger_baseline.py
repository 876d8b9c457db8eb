"""stock ledger baseline

Revision ID: 20261017_0001
Revises:
Create Date: 2026-10-17 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261017_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _table_exists(inspector: sa.Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def _index_exists(inspector: sa.Inspector, table_name: str, index_name: str) -> bool:
    return index_name in {index["name"] for index in inspector.get_indexes(table_name)}


def _create_index(inspector: sa.Inspector, name: str, table: str, columns: list, unique: bool = False) -> None:
    if not _index_exists(inspector, table, name):
        op.create_index(name, table, columns, unique=unique)


def _timestamps(*, updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]
    if updated:
        columns.append(
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())
        )
    return columns


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    if not _table_exists(inspector, "users"):
        op.create_table(
            "users",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=True),
            sa.Column("hashed_password", sa.String(length=255), nullable=False),
            sa.Column("role", sa.String(length=10), nullable=False, server_default="VIEWER"),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "categories"):
        op.create_table(
            "categories",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("prefix", sa.String(length=10), nullable=True),
            sa.Column("description", sa.String(length=255), nullable=True),
            sa.Column("parent_id", sa.Integer(), nullable=True),
            *_timestamps(updated=False),
            sa.ForeignKeyConstraint(["parent_id"], ["categories.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("name"),
            sa.UniqueConstraint("prefix"),
        )

    if not _table_exists(inspector, "category_visibility"):
        op.create_table(
            "category_visibility",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("user_id", sa.String(length=36), nullable=False),
            sa.Column("category_id", sa.Integer(), nullable=False),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
            sa.ForeignKeyConstraint(["category_id"], ["categories.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("user_id", "category_id", name="uq_category_visibility_user_category"),
        )

    if not _table_exists(inspector, "products"):
        op.create_table(
            "products",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("sku", sa.String(length=50), nullable=False),
            sa.Column("name", sa.String(length=255), nullable=False),
            sa.Column("category_id", sa.Integer(), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("unit", sa.String(length=20), nullable=False, server_default="pcs"),
            sa.Column("price", sa.Numeric(14, 2), nullable=False, server_default="0"),
            sa.Column("cost_price", sa.Numeric(14, 2), nullable=False, server_default="0"),
            sa.Column("min_stock", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("current_stock", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("is_consumable", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("condition", sa.String(length=30), nullable=True),
            sa.Column("image", sa.String(length=255), nullable=True),
            sa.Column("created_by", sa.String(length=36), nullable=True),
            *_timestamps(),
            sa.CheckConstraint("current_stock >= 0", name="ck_products_current_stock_non_negative"),
            sa.CheckConstraint("min_stock >= 0", name="ck_products_min_stock_non_negative"),
            sa.ForeignKeyConstraint(["category_id"], ["categories.id"]),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("sku"),
        )

    if not _table_exists(inspector, "locations"):
        op.create_table(
            "locations",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("name", sa.String(length=120), nullable=False),
            sa.Column("type", sa.String(length=10), nullable=False),
            sa.Column("parent_id", sa.Integer(), nullable=True),
            sa.Column("description", sa.String(length=255), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["parent_id"], ["locations.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "product_locations"):
        op.create_table(
            "product_locations",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("product_id", sa.Integer(), nullable=False),
            sa.Column("location_id", sa.Integer(), nullable=False),
            sa.Column("quantity", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("product_id", "location_id", name="uq_product_locations_product_location"),
        )

    if not _table_exists(inspector, "movements"):
        op.create_table(
            "movements",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("product_id", sa.Integer(), nullable=False),
            sa.Column("from_location_id", sa.Integer(), nullable=True),
            sa.Column("to_location_id", sa.Integer(), nullable=True),
            sa.Column("quantity", sa.Integer(), nullable=False),
            sa.Column("type", sa.String(length=20), nullable=False),
            sa.Column("reference_id", sa.String(length=36), nullable=True),
            sa.Column("notes", sa.String(length=255), nullable=True),
            sa.Column("moved_by", sa.String(length=36), nullable=False),
            *_timestamps(updated=False),
            sa.CheckConstraint("quantity > 0", name="ck_movements_quantity_positive"),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.ForeignKeyConstraint(["from_location_id"], ["locations.id"]),
            sa.ForeignKeyConstraint(["to_location_id"], ["locations.id"]),
            sa.ForeignKeyConstraint(["moved_by"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "loans"):
        op.create_table(
            "loans",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("transaction_code", sa.String(length=30), nullable=False),
            sa.Column("borrower_name", sa.String(length=120), nullable=False),
            sa.Column("borrower_phone", sa.String(length=30), nullable=False),
            sa.Column("product_id", sa.Integer(), nullable=False),
            sa.Column("qty", sa.Integer(), nullable=False),
            sa.Column("loan_date", sa.DateTime(timezone=True), nullable=False),
            sa.Column("due_date", sa.DateTime(timezone=True), nullable=False),
            sa.Column("return_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("status", sa.String(length=10), nullable=False, server_default="ACTIVE"),
            sa.Column("last_notified_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("notes", sa.String(length=255), nullable=True),
            sa.Column("created_by", sa.String(length=36), nullable=False),
            *_timestamps(),
            sa.CheckConstraint("qty > 0", name="ck_loans_qty_positive"),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("transaction_code"),
        )

    if not _table_exists(inspector, "sales"):
        op.create_table(
            "sales",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("invoice_code", sa.String(length=30), nullable=False),
            sa.Column("customer_name", sa.String(length=120), nullable=True),
            sa.Column("total_amount", sa.Numeric(14, 2), nullable=False),
            sa.Column("sale_date", sa.DateTime(timezone=True), nullable=False),
            sa.Column("created_by", sa.String(length=36), nullable=False),
            *_timestamps(updated=False),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("invoice_code"),
        )

    if not _table_exists(inspector, "sale_items"):
        op.create_table(
            "sale_items",
            sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
            sa.Column("sale_id", sa.String(length=36), nullable=False),
            sa.Column("product_id", sa.Integer(), nullable=False),
            sa.Column("qty", sa.Integer(), nullable=False),
            sa.Column("selling_price", sa.Numeric(14, 2), nullable=False),
            sa.Column("cost_price", sa.Numeric(14, 2), nullable=True),
            sa.Column("line_total", sa.Numeric(14, 2), nullable=False),
            sa.CheckConstraint("qty > 0", name="ck_sale_items_qty_positive"),
            sa.ForeignKeyConstraint(["sale_id"], ["sales.id"]),
            sa.ForeignKeyConstraint(["product_id"], ["products.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    if not _table_exists(inspector, "audit_trail"):
        op.create_table(
            "audit_trail",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("actor_user_id", sa.String(length=36), nullable=True),
            sa.Column("action", sa.String(length=50), nullable=False),
            sa.Column("entity_type", sa.String(length=50), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=True),
            sa.Column("details", sa.JSON(), nullable=True),
            sa.Column("ip_address", sa.String(length=64), nullable=True),
            *_timestamps(updated=False),
            sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
            sa.PrimaryKeyConstraint("id"),
        )

    inspector = sa.inspect(bind)
    _create_index(inspector, "ix_users_email", "users", ["email"], unique=True)
    _create_index(inspector, "ux_users_email_lower", "users", [sa.text("lower(email)")], unique=True)
    _create_index(inspector, "ix_categories_parent_id", "categories", ["parent_id"])
    _create_index(inspector, "ix_category_visibility_user_id", "category_visibility", ["user_id"])
    _create_index(inspector, "ix_category_visibility_category_id", "category_visibility", ["category_id"])
    _create_index(inspector, "ix_products_category_id", "products", ["category_id"])
    _create_index(inspector, "ix_products_category_updated_at", "products", ["category_id", "updated_at"])
    _create_index(inspector, "ix_locations_parent_id", "locations", ["parent_id"])
    _create_index(inspector, "ix_locations_type_name", "locations", ["type", "name"])
    _create_index(inspector, "ix_product_locations_product_id", "product_locations", ["product_id"])
    _create_index(inspector, "ix_product_locations_location_id", "product_locations", ["location_id"])
    _create_index(inspector, "ix_movements_product_id", "movements", ["product_id"])
    _create_index(inspector, "ix_movements_reference_id", "movements", ["reference_id"])
    _create_index(inspector, "ix_movements_created_at", "movements", ["created_at"])
    _create_index(inspector, "ix_movements_product_created_at", "movements", ["product_id", "created_at"])
    _create_index(inspector, "ix_loans_product_id", "loans", ["product_id"])
    _create_index(inspector, "ix_loans_status_due_date", "loans", ["status", "due_date"])
    _create_index(inspector, "ix_sales_sale_date", "sales", ["sale_date"])
    _create_index(inspector, "ix_sale_items_sale_id", "sale_items", ["sale_id"])
    _create_index(inspector, "ix_sale_items_product_id", "sale_items", ["product_id"])
    _create_index(inspector, "ix_audit_trail_actor_user_id", "audit_trail", ["actor_user_id"])
    _create_index(inspector, "ix_audit_trail_entity_id", "audit_trail", ["entity_id"])
    _create_index(inspector, "ix_audit_trail_created_at", "audit_trail", ["created_at"])
    _create_index(inspector, "ix_audit_trail_action_created_at", "audit_trail", ["action", "created_at"])
    _create_index(inspector, "ix_audit_trail_entity", "audit_trail", ["entity_type", "entity_id"])


def downgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for table_name in (
        "audit_trail",
        "sale_items",
        "sales",
        "loans",
        "movements",
        "product_locations",
        "locations",
        "products",
        "category_visibility",
        "categories",
        "users",
    ):
        if _table_exists(inspector, table_name):
            op.drop_table(table_name)
