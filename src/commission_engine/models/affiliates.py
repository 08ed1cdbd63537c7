"""Affiliate profiles and the referral graph."""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from commission_engine.models.base import Base, TimestampMixin


class AffiliateProfile(Base, TimestampMixin):
    """Affiliate profile row. Written by the account surface, read-only here."""

    __tablename__ = "affiliate_profile"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    referral_code: Mapped[str | None] = mapped_column(String(100), nullable=True, unique=True)
    commission_eligible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class SubAffiliate(Base, TimestampMixin):
    """Referral edge: `parent_affiliate_id` is an ancestor of `sub_affiliate_id`.

    `level` is the distance between them (1 = direct referrer).
    """

    __tablename__ = "sub_affiliate"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    parent_affiliate_id: Mapped[UUID] = mapped_column(nullable=False)
    sub_affiliate_id: Mapped[UUID] = mapped_column(nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint(
            "parent_affiliate_id", "sub_affiliate_id", name="sub_affiliate_edge_uq"
        ),
        CheckConstraint("level >= 1", name="sub_affiliate_level_ck"),
        CheckConstraint(
            "parent_affiliate_id <> sub_affiliate_id", name="sub_affiliate_no_self_ck"
        ),
        Index("sub_affiliate_sub_idx", "sub_affiliate_id", "level"),
    )
