"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2025-10-01 09:00:00.000000
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _lifecycle_columns():
    return [
        sa.Column("active", sa.Boolean, nullable=False, server_default=sa.text("1")),
        sa.Column("exists", sa.Boolean, nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column("deleted_at", sa.DateTime, nullable=True),
        sa.Column("created_by", sa.Integer, nullable=True),
        sa.Column("modified_by", sa.Integer, nullable=True),
        sa.Column("deleted_by", sa.Integer, nullable=True),
    ]


def upgrade() -> None:
    bind = op.get_bind()

    # --- Organizations ---
    op.create_table(
        "clients",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String, nullable=True),
        sa.Column("phone", sa.String, nullable=True),
        sa.Column("contact_person", sa.String, nullable=True),
        sa.Column("company_type", sa.String, nullable=True),
        sa.Column("tax_id", sa.String, nullable=True),
        sa.Column("website", sa.String, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("address", sa.JSON, nullable=True),
        sa.Column("is_corporate", sa.Boolean, nullable=False, server_default=sa.text("1")),
        sa.Column("oauth_domain", sa.String, nullable=True),
        sa.Column("auto_provision_employees", sa.Boolean, nullable=False, server_default=sa.text("0")),
        sa.Column("default_employee_role", sa.String, nullable=False, server_default="employee"),
        sa.Column("employee_access_level", sa.String, nullable=False, server_default="basic"),
        *_lifecycle_columns(),
    )

    # manager_id FK is added once users exists
    op.create_table(
        "departments",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("client_id", sa.Integer, nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("manager_id", sa.Integer, nullable=True),
        sa.Column("budget", sa.Numeric(18, 2), nullable=True),
        sa.Column("cost_center", sa.String, nullable=True),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_departments_client", "departments", ["client_id"])

    # --- RBAC ---
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(50), nullable=False, unique=True),
        sa.Column("display_name", sa.String, nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("level", sa.Integer, nullable=False, server_default="1"),
        sa.Column("scope", sa.String, nullable=False, server_default="public"),
        sa.Column("organization", sa.String, nullable=False, server_default="amexing"),
        sa.Column("base_permissions", sa.JSON, nullable=False),
        sa.Column("delegatable", sa.Boolean, nullable=False, server_default=sa.text("0")),
        sa.Column("inherits_from", sa.String(50), nullable=True),
        sa.Column("conditions", sa.JSON, nullable=False),
        sa.Column("contextual_permissions", sa.JSON, nullable=False),
        sa.Column("delegatable_permissions", sa.JSON, nullable=False),
        sa.Column("max_delegation_level", sa.Integer, nullable=True),
        sa.Column("is_system_role", sa.Boolean, nullable=False, server_default=sa.text("0")),
        sa.Column("color", sa.String, nullable=True),
        sa.Column("icon", sa.String, nullable=True),
        *_lifecycle_columns(),
    )

    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("resource", sa.String(50), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("scope", sa.String, nullable=False, server_default="own"),
        sa.Column("conditions", sa.JSON, nullable=False),
        sa.Column("category", sa.String, nullable=True),
        sa.Column("priority", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_system_permission", sa.Boolean, nullable=False, server_default=sa.text("0")),
        sa.Column("requires_approval", sa.Boolean, nullable=False, server_default=sa.text("0")),
        sa.Column("delegatable", sa.Boolean, nullable=False, server_default=sa.text("1")),
        sa.Column("includes", sa.JSON, nullable=False),
        sa.Column("prerequisites", sa.JSON, nullable=False),
        *_lifecycle_columns(),
    )
    op.create_index("ix_permissions_resource", "permissions", ["resource"])

    op.create_table(
        "users",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("username", sa.String(50), nullable=False, unique=True),
        sa.Column("email", sa.String, nullable=False, unique=True),
        sa.Column("first_name", sa.String, nullable=True),
        sa.Column("last_name", sa.String, nullable=True),
        sa.Column("password_hash", sa.String, nullable=True),
        sa.Column("role_id", sa.Integer, nullable=True),
        sa.Column("client_id", sa.Integer, nullable=True),
        sa.Column("department_id", sa.Integer, nullable=True),
        sa.Column("login_attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("locked_until", sa.DateTime, nullable=True),
        sa.Column("last_login_at", sa.DateTime, nullable=True),
        sa.Column("last_auth_method", sa.String, nullable=True),
        sa.Column("password_changed_at", sa.DateTime, nullable=True),
        sa.Column("must_change_password", sa.Boolean, nullable=False, server_default=sa.text("0")),
        sa.Column("email_verified", sa.Boolean, nullable=False, server_default=sa.text("0")),
        sa.Column("oauth_accounts", sa.JSON, nullable=False),
        sa.Column("primary_oauth_provider", sa.String, nullable=True),
        sa.Column("contextual_data", sa.JSON, nullable=False),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["client_id"], ["clients.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
    )

    # SQLite cannot add constraints to an existing table
    if bind.dialect.name != "sqlite":
        op.create_foreign_key(
            "fk_departments_manager_id", "departments", "users",
            ["manager_id"], ["id"], ondelete="SET NULL",
        )

    op.create_table(
        "delegated_permissions",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("from_user_id", sa.Integer, nullable=False),
        sa.Column("to_user_id", sa.Integer, nullable=False),
        sa.Column("permissions", sa.JSON, nullable=False),
        sa.Column("conditions", sa.JSON, nullable=False),
        sa.Column("restrictions", sa.JSON, nullable=False),
        sa.Column("valid_from", sa.DateTime, nullable=False),
        sa.Column("valid_until", sa.DateTime, nullable=True),
        sa.Column("is_permanent", sa.Boolean, nullable=False, server_default=sa.text("0")),
        sa.Column("reason", sa.Text, nullable=True),
        sa.Column("delegation_type", sa.String, nullable=False, server_default="temporary"),
        sa.Column("priority", sa.String, nullable=False, server_default="normal"),
        sa.Column("status", sa.String, nullable=False, server_default="active"),
        sa.Column("usage_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("usage_today", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_used_at", sa.DateTime, nullable=True),
        sa.Column("revoked_by", sa.Integer, nullable=True),
        sa.Column("revoked_at", sa.DateTime, nullable=True),
        sa.Column("revocation_reason", sa.Text, nullable=True),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(["from_user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["to_user_id"], ["users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_delegations_to_user", "delegated_permissions", ["to_user_id", "status"])
    op.create_index("ix_delegations_from_user", "delegated_permissions", ["from_user_id", "status"])

    # --- Fleet & catalog ---
    op.create_table(
        "rates",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("percentage", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("color", sa.String, nullable=True),
        *_lifecycle_columns(),
    )

    op.create_table(
        "vehicle_types",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("code", sa.String(50), nullable=False, unique=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("icon", sa.String, nullable=True),
        sa.Column("default_capacity", sa.Integer, nullable=False, server_default="4"),
        sa.Column("sort_order", sa.Integer, nullable=False, server_default="0"),
        *_lifecycle_columns(),
    )

    op.create_table(
        "vehicles",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("vehicle_type_id", sa.Integer, nullable=False),
        sa.Column("rate_id", sa.Integer, nullable=True),
        sa.Column("brand", sa.String, nullable=False),
        sa.Column("model", sa.String, nullable=False),
        sa.Column("year", sa.Integer, nullable=False),
        sa.Column("license_plate", sa.String(20), nullable=False),
        sa.Column("capacity", sa.Integer, nullable=False),
        sa.Column("color", sa.String, nullable=True),
        sa.Column("features", sa.JSON, nullable=False),
        sa.Column("maintenance_status", sa.String, nullable=False, server_default="operational"),
        sa.Column("insurance_expiry", sa.Date, nullable=True),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(["vehicle_type_id"], ["vehicle_types.id"]),
        sa.ForeignKeyConstraint(["rate_id"], ["rates.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_vehicles_plate", "vehicles", ["license_plate"])

    op.create_table(
        "vehicle_images",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("vehicle_id", sa.Integer, nullable=False),
        sa.Column("url", sa.String, nullable=False),
        sa.Column("file_name", sa.String, nullable=True),
        sa.Column("display_order", sa.Integer, nullable=False, server_default="0"),
        sa.Column("is_primary", sa.Boolean, nullable=False, server_default=sa.text("0")),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(["vehicle_id"], ["vehicles.id"], ondelete="CASCADE"),
    )

    op.create_table(
        "service_types",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        *_lifecycle_columns(),
    )

    op.create_table(
        "pois",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(200), nullable=False, unique=True),
        sa.Column("service_type_id", sa.Integer, nullable=True),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(["service_type_id"], ["service_types.id"], ondelete="SET NULL"),
    )

    op.create_table(
        "services",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("origin_poi_id", sa.Integer, nullable=True),
        sa.Column("destination_poi_id", sa.Integer, nullable=False),
        sa.Column("vehicle_type_id", sa.Integer, nullable=False),
        sa.Column("rate_id", sa.Integer, nullable=True),
        sa.Column("price", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("note", sa.Text, nullable=True),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(["origin_poi_id"], ["pois.id"]),
        sa.ForeignKeyConstraint(["destination_poi_id"], ["pois.id"]),
        sa.ForeignKeyConstraint(["vehicle_type_id"], ["vehicle_types.id"]),
        sa.ForeignKeyConstraint(["rate_id"], ["rates.id"], ondelete="SET NULL"),
    )

    op.create_table(
        "client_prices",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("client_id", sa.Integer, nullable=False),
        sa.Column("rate_id", sa.Integer, nullable=False),
        sa.Column("vehicle_type_id", sa.Integer, nullable=False),
        sa.Column("item_type", sa.String(20), nullable=False),
        sa.Column("item_id", sa.Integer, nullable=False),
        sa.Column("price", sa.Numeric(18, 2), nullable=False),
        sa.Column("base_price", sa.Numeric(18, 2), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="MXN"),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("last_modified_by", sa.Integer, nullable=True),
        sa.Column("valid_until", sa.DateTime, nullable=True),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(["client_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["rate_id"], ["rates.id"]),
        sa.ForeignKeyConstraint(["vehicle_type_id"], ["vehicle_types.id"]),
    )
    op.create_index(
        "ix_client_prices_key",
        "client_prices",
        ["client_id", "item_type", "item_id", "rate_id", "vehicle_type_id"],
    )

    # --- Sales ---
    op.create_table(
        "quotes",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("folio", sa.String(20), nullable=False, unique=True),
        sa.Column("rate_id", sa.Integer, nullable=False),
        sa.Column("client_id", sa.Integer, nullable=True),
        sa.Column("contact_person", sa.String, nullable=True),
        sa.Column("contact_email", sa.String, nullable=True),
        sa.Column("contact_phone", sa.String, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("status", sa.String, nullable=False, server_default="draft"),
        sa.Column("valid_until", sa.DateTime, nullable=True),
        sa.Column("number_of_people", sa.Integer, nullable=True),
        sa.Column("event_type", sa.String, nullable=True),
        sa.Column("service_items", sa.JSON, nullable=False),
        sa.Column("share_token", sa.String(64), nullable=True, unique=True),
        sa.Column("share_token_active", sa.Boolean, nullable=False, server_default=sa.text("0")),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(["rate_id"], ["rates.id"]),
        sa.ForeignKeyConstraint(["client_id"], ["users.id"], ondelete="SET NULL"),
    )

    op.create_table(
        "invoices",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("quote_id", sa.Integer, nullable=False),
        sa.Column("requested_by_id", sa.Integer, nullable=True),
        sa.Column("processed_by_id", sa.Integer, nullable=True),
        sa.Column("status", sa.String, nullable=False, server_default="pending"),
        sa.Column("request_date", sa.DateTime, nullable=False),
        sa.Column("process_date", sa.DateTime, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("invoice_number", sa.String, nullable=True),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(["quote_id"], ["quotes.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["requested_by_id"], ["users.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["processed_by_id"], ["users.id"], ondelete="SET NULL"),
    )

    op.create_table(
        "experiences",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.String(1000), nullable=False),
        sa.Column("type", sa.String(20), nullable=False, server_default="Experience"),
        sa.Column("cost", sa.Numeric(18, 2), nullable=False, server_default="0"),
        sa.Column("main_image", sa.String, nullable=True),
        *_lifecycle_columns(),
    )

    op.create_table(
        "experience_inclusions",
        sa.Column("package_id", sa.Integer, primary_key=True),
        sa.Column("experience_id", sa.Integer, primary_key=True),
        sa.Column("position", sa.Integer, nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["package_id"], ["experiences.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["experience_id"], ["experiences.id"], ondelete="CASCADE"),
    )


def downgrade() -> None:
    bind = op.get_bind()
    for table in (
        "experience_inclusions",
        "experiences",
        "invoices",
        "quotes",
        "client_prices",
        "services",
        "pois",
        "service_types",
        "vehicle_images",
        "vehicles",
        "vehicle_types",
        "rates",
        "delegated_permissions",
    ):
        op.drop_table(table)
    if bind.dialect.name != "sqlite":
        op.drop_constraint("fk_departments_manager_id", "departments", type_="foreignkey")
    for table in ("users", "permissions", "roles", "departments", "clients"):
        op.drop_table(table)
