"""Initial schema: users, reports, status history, points ledger, products, redemptions.

Revision ID: 2026_10_19_0000
Revises:
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import ARRAY, UUID

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "2026_10_19_0000"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _timestamps(with_updated: bool = True) -> list[sa.Column]:
    columns = [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        )
    ]
    if with_updated:
        columns.append(
            sa.Column(
                "updated_at",
                sa.DateTime(timezone=True),
                nullable=False,
                server_default=sa.func.now(),
                onupdate=sa.func.now(),
            )
        )
    return columns


def upgrade() -> None:
    """Create all tables."""
    op.create_table(
        "users",
        sa.Column(
            "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column("email", sa.String(255), nullable=True, unique=True),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="citizen"),
        sa.Column("points", sa.BigInteger, nullable=False, server_default="0"),
        *_timestamps(),
        sa.CheckConstraint("points >= 0", name="ck_users_points_non_negative"),
        sa.CheckConstraint("role IN ('citizen', 'admin')", name="ck_users_role"),
    )
    op.create_index("idx_users_role", "users", ["role"])

    op.create_table(
        "reports",
        sa.Column(
            "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("category", sa.String(50), nullable=False),
        sa.Column("address", sa.String(500), nullable=False),
        sa.Column("city", sa.String(255), nullable=False),
        sa.Column("governorate", sa.String(255), nullable=False),
        sa.Column("latitude", sa.Float, nullable=False),
        sa.Column("longitude", sa.Float, nullable=False),
        sa.Column("image_urls", ARRAY(sa.String), nullable=False, server_default="{}"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("urgency", sa.String(20), nullable=False, server_default="medium"),
        sa.Column("reporter_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("admin_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("ai_classification", sa.String(50), nullable=True),
        sa.Column("ai_urgency", sa.String(20), nullable=True),
        sa.Column("ai_confidence", sa.Float, nullable=True),
        sa.Column("ai_analyzed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending', 'in-progress', 'resolved', 'rejected')",
            name="ck_reports_status",
        ),
        sa.CheckConstraint(
            "urgency IN ('low', 'medium', 'high', 'critical')",
            name="ck_reports_urgency",
        ),
        sa.CheckConstraint(
            "ai_confidence IS NULL OR (ai_confidence >= 0 AND ai_confidence <= 1)",
            name="ck_reports_ai_confidence_range",
        ),
    )
    op.create_index("idx_reports_reporter_id", "reports", ["reporter_id"])
    op.create_index("idx_reports_status", "reports", ["status"])
    op.create_index("idx_reports_urgency", "reports", ["urgency"])
    op.create_index("idx_reports_created_at", "reports", ["created_at"])

    op.create_table(
        "report_status_history",
        sa.Column(
            "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column(
            "report_id",
            UUID(as_uuid=True),
            sa.ForeignKey("reports.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer, nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("actor_id", UUID(as_uuid=True), nullable=True),
        sa.Column("note", sa.Text, nullable=False, server_default=""),
        *_timestamps(with_updated=False),
        sa.UniqueConstraint("report_id", "position", name="uq_report_status_history_position"),
        sa.CheckConstraint("position >= 0", name="ck_report_status_history_position"),
    )

    # Immutable points ledger
    op.create_table(
        "points_transactions",
        sa.Column(
            "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("type", sa.String(10), nullable=False),
        sa.Column("source", sa.String(30), nullable=False),
        sa.Column("amount", sa.BigInteger, nullable=False),
        sa.Column("balance", sa.BigInteger, nullable=False),
        sa.Column("reference_id", UUID(as_uuid=True), nullable=True),
        sa.Column("description", sa.String, nullable=False),
        *_timestamps(with_updated=False),
        sa.CheckConstraint("amount > 0", name="ck_points_transactions_amount_positive"),
        sa.CheckConstraint("balance >= 0", name="ck_points_transactions_balance_non_negative"),
        sa.CheckConstraint("type IN ('earn', 'redeem')", name="ck_points_transactions_type"),
    )
    op.create_index(
        "idx_points_transactions_user_created", "points_transactions", ["user_id", "created_at"]
    )
    op.create_index("idx_points_transactions_source", "points_transactions", ["source"])
    op.create_index(
        "uq_points_transactions_report_reward",
        "points_transactions",
        ["source", "reference_id"],
        unique=True,
        postgresql_where=sa.text("source IN ('report_submission', 'report_resolved')"),
    )

    op.create_table(
        "products",
        sa.Column(
            "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text, nullable=False, server_default=""),
        sa.Column("points_cost", sa.BigInteger, nullable=False),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("image_url", sa.String(1000), nullable=True),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("stock", sa.Integer, nullable=True),
        *_timestamps(),
        sa.CheckConstraint("points_cost >= 1", name="ck_products_points_cost_positive"),
        sa.CheckConstraint("stock IS NULL OR stock >= 0", name="ck_products_stock_non_negative"),
        sa.CheckConstraint(
            "stock IS NULL OR stock > 0 OR is_active = false",
            name="ck_products_depleted_inactive",
        ),
    )
    op.create_index("idx_products_is_active", "products", ["is_active"])
    op.create_index("idx_products_category", "products", ["category"])

    op.create_table(
        "redemptions",
        sa.Column(
            "id", UUID(as_uuid=True), primary_key=True, server_default=sa.text("gen_random_uuid()")
        ),
        sa.Column("user_id", UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("product_id", UUID(as_uuid=True), sa.ForeignKey("products.id"), nullable=False),
        sa.Column("points_cost", sa.BigInteger, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text, nullable=False, server_default=""),
        sa.Column("admin_id", UUID(as_uuid=True), nullable=True),
        sa.Column("processing_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completion_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("points_cost >= 1", name="ck_redemptions_points_cost_positive"),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'rejected')",
            name="ck_redemptions_status",
        ),
    )
    op.create_index("idx_redemptions_user_id", "redemptions", ["user_id"])
    op.create_index("idx_redemptions_product_id", "redemptions", ["product_id"])
    op.create_index("idx_redemptions_status", "redemptions", ["status"])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table("redemptions")
    op.drop_table("products")
    op.drop_index("uq_points_transactions_report_reward", table_name="points_transactions")
    op.drop_table("points_transactions")
    op.drop_table("report_status_history")
    op.drop_table("reports")
    op.drop_table("users")
