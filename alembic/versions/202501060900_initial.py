"""users, expenses and weekly analyses

Revision ID: 202501060900
Revises:
Create Date: 2025-01-06 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202501060900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("name", sa.String(length=120), nullable=False, server_default=""),
        sa.Column(
            "role",
            sa.Enum("user", "admin", "super_admin", name="userrole"),
            nullable=False,
        ),
        sa.Column(
            "status",
            sa.Enum(
                "active", "verified", "pending", "suspended", "banned",
                name="accountstatus",
            ),
            nullable=False,
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("retention_months", sa.Integer()),
        sa.Column("last_cleanup_at", sa.DateTime()),
        sa.Column(
            "auto_cleanup", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("retention_updated_at", sa.DateTime()),
        sa.Column(
            "daily_summary_enabled",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column(
            "weekly_report_enabled",
            sa.Boolean(),
            nullable=False,
            server_default=sa.false(),
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "retention_months IS NULL OR (retention_months >= 1 AND retention_months <= 12)",
            name="ck_users_retention_months_range",
        ),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column(
            "category", sa.String(length=50), nullable=False, server_default="Other"
        ),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("tags_json", sa.Text()),
        sa.Column("notes", sa.Text()),
        sa.Column(
            "payment_method", sa.Enum("cash", "card", "upi", name="paymentmethod")
        ),
        sa.Column(
            "is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "recurring_frequency",
            sa.Enum("daily", "weekly", "monthly", "yearly", name="recurringfrequency"),
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
    )
    op.create_index("ix_expenses_user_date", "expenses", ["user_id", "date"])
    op.create_index(
        "ix_expenses_user_category_date", "expenses", ["user_id", "category", "date"]
    )

    op.create_table(
        "weekly_analyses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("week_start_date", sa.Date(), nullable=False),
        sa.Column("week_end_date", sa.Date(), nullable=False),
        sa.Column(
            "total_amount_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("total_expenses", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "average_daily_spend", sa.Float(), nullable=False, server_default="0"
        ),
        sa.Column("category_breakdown", sa.JSON(), nullable=False),
        sa.Column("daily_totals", sa.JSON(), nullable=False),
        sa.Column("top_expenses", sa.JSON(), nullable=False),
        sa.Column("insights", sa.JSON(), nullable=False),
        sa.Column("ai_suggestions", sa.JSON()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "user_id", "week_start_date", name="uq_analysis_user_week"
        ),
    )
    op.create_index(
        "ix_analysis_user_week_end", "weekly_analyses", ["user_id", "week_end_date"]
    )


def downgrade():
    op.drop_index("ix_analysis_user_week_end", table_name="weekly_analyses")
    op.drop_table("weekly_analyses")
    op.drop_index("ix_expenses_user_category_date", table_name="expenses")
    op.drop_index("ix_expenses_user_date", table_name="expenses")
    op.drop_table("expenses")
    op.drop_table("users")
