"""baseline_schema

Revision ID: 5b1d0c7e2a94
Revises:
Create Date: 2026-10-19 09:12:41.118203

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5b1d0c7e2a94"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_NOW_ISO = sa.text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS"Z"')""")


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "generation_jobs",
    sa.Column("job_id", sa.String(), nullable=False),
    sa.Column("user_id", sa.String(), nullable=True),
    sa.Column("document", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    sa.Column("created_at", sa.String(), server_default=_NOW_ISO, nullable=False),
    sa.Column("updated_at", sa.String(), server_default=_NOW_ISO, nullable=False),
    sa.PrimaryKeyConstraint("job_id"),
  )
  op.create_index(op.f("ix_generation_jobs_user_id"), "generation_jobs", ["user_id"], unique=False)

  op.create_table(
    "credit_accounts",
    sa.Column("user_id", sa.String(), nullable=False),
    sa.Column("balance", sa.Integer(), server_default=sa.text("0"), nullable=False),
    sa.Column("plan", sa.String(), server_default=sa.text("'personal'"), nullable=False),
    sa.Column("updated_at", sa.String(), server_default=_NOW_ISO, nullable=False),
    sa.PrimaryKeyConstraint("user_id"),
    sa.CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_non_negative"),
  )


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_table("credit_accounts")
  op.drop_index(op.f("ix_generation_jobs_user_id"), table_name="generation_jobs")
  op.drop_table("generation_jobs")
