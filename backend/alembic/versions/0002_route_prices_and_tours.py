"""route prices and tours

Services become routes (origin, destination, vehicle type). Prices per rate
move to rate_prices; tours and their prices get their own tables.

Revision ID: 0002_route_prices_and_tours
Revises: 0001_initial_schema
Create Date: 2025-11-04 10:00:00.000000
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0002_route_prices_and_tours"
down_revision: Union[str, Sequence[str], None] = "0001_initial_schema"
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
    op.create_table(
        "rate_prices",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("service_id", sa.Integer, nullable=False),
        sa.Column("rate_id", sa.Integer, nullable=False),
        sa.Column("vehicle_type_id", sa.Integer, nullable=False),
        sa.Column("price", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="MXN"),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(["service_id"], ["services.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["rate_id"], ["rates.id"]),
        sa.ForeignKeyConstraint(["vehicle_type_id"], ["vehicle_types.id"]),
    )
    op.create_index("ix_rate_prices_key", "rate_prices", ["service_id", "rate_id", "vehicle_type_id"])

    op.create_table(
        "tours",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("destination_poi_id", sa.Integer, nullable=False),
        sa.Column("time", sa.Integer, nullable=False, server_default="0"),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("available_days", sa.JSON, nullable=True),
        sa.Column("start_time", sa.String(5), nullable=True),
        sa.Column("end_time", sa.String(5), nullable=True),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(["destination_poi_id"], ["pois.id"]),
    )

    op.create_table(
        "tour_prices",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("tour_id", sa.Integer, nullable=False),
        sa.Column("rate_id", sa.Integer, nullable=False),
        sa.Column("vehicle_type_id", sa.Integer, nullable=False),
        sa.Column("price", sa.Numeric(18, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="MXN"),
        *_lifecycle_columns(),
        sa.ForeignKeyConstraint(["tour_id"], ["tours.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["rate_id"], ["rates.id"]),
        sa.ForeignKeyConstraint(["vehicle_type_id"], ["vehicle_types.id"]),
    )
    op.create_index("ix_tour_prices_key", "tour_prices", ["tour_id", "rate_id", "vehicle_type_id"])

    # priced services keep their price as a rate price
    op.execute(
        """
        INSERT INTO rate_prices (service_id, rate_id, vehicle_type_id, price, currency, active, "exists", created_by)
        SELECT id, rate_id, vehicle_type_id, price, 'MXN', active, "exists", created_by
        FROM services
        WHERE rate_id IS NOT NULL AND price > 0
        """
    )

    with op.batch_alter_table("services") as batch:
        batch.drop_column("price")
        batch.drop_column("rate_id")


def downgrade() -> None:
    with op.batch_alter_table("services") as batch:
        batch.add_column(sa.Column("rate_id", sa.Integer, nullable=True))
        batch.add_column(sa.Column("price", sa.Numeric(18, 2), nullable=False, server_default="0"))
        batch.create_foreign_key("fk_services_rate_id", "rates", ["rate_id"], ["id"], ondelete="SET NULL")

    # one rate price per route survives the downgrade
    op.execute(
        """
        UPDATE services SET
            rate_id = (SELECT rp.rate_id FROM rate_prices rp WHERE rp.service_id = services.id ORDER BY rp.id LIMIT 1),
            price = COALESCE((SELECT rp.price FROM rate_prices rp WHERE rp.service_id = services.id ORDER BY rp.id LIMIT 1), 0)
        """
    )

    op.drop_index("ix_tour_prices_key", table_name="tour_prices")
    op.drop_table("tour_prices")
    op.drop_table("tours")
    op.drop_index("ix_rate_prices_key", table_name="rate_prices")
    op.drop_table("rate_prices")
