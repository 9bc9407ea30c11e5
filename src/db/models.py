"""SQLAlchemy declarative base for all ORM models."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""


class SyncRecordModel(Base):
    """ORM model for the sync ledger.

    One row per prepared update, keyed by the funding signature that paid
    for it. Holds signatures, addresses and URIs only; never key material.
    """

    __tablename__ = "sync_records"

    funding_signature: Mapped[str] = mapped_column(String, primary_key=True)
    asset_address: Mapped[str] = mapped_column(String, nullable=False, index=True)
    payer_address: Mapped[str] = mapped_column(String, nullable=False)
    funding_wallet: Mapped[str] = mapped_column(String, nullable=False)
    metadata_uri: Mapped[str | None] = mapped_column(String, nullable=True)
    # authority가 부분 서명한 업데이트 트랜잭션 (base64) + blockhash 유효 높이
    update_transaction: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_valid_block_height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    update_signature: Mapped[str | None] = mapped_column(String, nullable=True)
    # PipelineStage 값
    stage: Mapped[str] = mapped_column(String, nullable=False)
    # 마지막 실패 메시지. 성공하면 비운다
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
