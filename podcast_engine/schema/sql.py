from __future__ import annotations

from sqlalchemy import CheckConstraint, Integer, String, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from podcast_engine.core.database import Base

_NOW_ISO = text("""to_char((now() AT TIME ZONE 'UTC'), 'YYYY-MM-DD"T"HH24:MI:SS"Z"')""")


class GenerationJobRow(Base):
  __tablename__ = "generation_jobs"

  job_id: Mapped[str] = mapped_column(String, primary_key=True)
  user_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
  document: Mapped[dict] = mapped_column(JSONB, nullable=False)
  created_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_NOW_ISO)
  updated_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_NOW_ISO)


class CreditAccountRow(Base):
  __tablename__ = "credit_accounts"
  __table_args__ = (CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_non_negative"),)

  user_id: Mapped[str] = mapped_column(String, primary_key=True)
  balance: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
  plan: Mapped[str] = mapped_column(String, nullable=False, server_default=text("'personal'"))
  updated_at: Mapped[str] = mapped_column(String, nullable=False, server_default=_NOW_ISO)
