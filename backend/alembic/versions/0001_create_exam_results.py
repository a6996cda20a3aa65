"""create exam results

Revision ID: 0001
Revises: 
Create Date: 2026-10-19

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "exam_results",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("student_id", sa.String(length=64), nullable=False),
        sa.Column("score", sa.String(length=16), nullable=False),
        sa.Column("correct", sa.Integer(), nullable=False),
        sa.Column("total", sa.Integer(), nullable=False),
        sa.Column("duration_seconds", sa.Integer(), nullable=False),
        sa.Column("specialization", sa.String(length=64), nullable=True),
        sa.Column("feedback", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("reported_score", sa.String(length=16), nullable=True),
        sa.Column("score_mismatch", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_exam_results_student_id", "exam_results", ["student_id"], unique=False)
    op.create_index("ix_exam_results_created_at", "exam_results", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_exam_results_created_at", table_name="exam_results")
    op.drop_index("ix_exam_results_student_id", table_name="exam_results")
    op.drop_table("exam_results")
