from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_sync_tables"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "agents",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("member_key", sa.String(length=120), nullable=False),

        sa.Column("first_name", sa.String(length=120), nullable=True),
        sa.Column("last_name", sa.String(length=120), nullable=True),
        sa.Column("full_name", sa.String(length=240), nullable=True),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("phone", sa.String(length=60), nullable=True),
        sa.Column("mls_id", sa.String(length=120), nullable=True),
        sa.Column("office_name", sa.String(length=240), nullable=True),

        sa.Column("modification_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=False),

        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),

        sa.UniqueConstraint("member_key", name="uq_agents_member_key"),
    )

    op.create_table(
        "listings",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("listing_key", sa.String(length=120), nullable=False),
        sa.Column("list_price", sa.Numeric(14, 2), nullable=True),
        sa.Column("list_agent_key", sa.String(length=120), nullable=True),

        sa.Column("street", sa.String(length=240), nullable=True),
        sa.Column("city", sa.String(length=120), nullable=True),
        sa.Column("state", sa.String(length=60), nullable=True),
        sa.Column("postal_code", sa.String(length=30), nullable=True),
        sa.Column("lat", sa.Float(), nullable=True),
        sa.Column("lng", sa.Float(), nullable=True),

        sa.Column("status", sa.String(length=80), nullable=False),
        sa.Column("status_history", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb")),

        sa.Column("modification_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_synced_at", sa.DateTime(timezone=True), nullable=False),

        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),

        sa.UniqueConstraint("listing_key", name="uq_listings_listing_key"),
    )

    op.create_index("ix_listings_list_agent_key", "listings", ["list_agent_key"])
    op.create_index("ix_listings_last_synced_at", "listings", ["last_synced_at"])

    op.create_table(
        "sync_runs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("trigger", sa.String(length=20), nullable=False),
        sa.Column("outcome", sa.String(length=30), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_seconds", sa.Float(), nullable=False, server_default="0"),

        sa.Column("counts", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("errors", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb")),

        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_index("ix_sync_runs_finished_at", "sync_runs", ["finished_at"])


def downgrade():
    op.drop_index("ix_sync_runs_finished_at", table_name="sync_runs")
    op.drop_table("sync_runs")
    op.drop_index("ix_listings_last_synced_at", table_name="listings")
    op.drop_index("ix_listings_list_agent_key", table_name="listings")
    op.drop_table("listings")
    op.drop_table("agents")
