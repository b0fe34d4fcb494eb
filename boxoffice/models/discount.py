from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, DateTime, ForeignKey, Enum, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from boxoffice.database import Base
import enum


class DiscountKind(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Discount(Base):
    __tablename__ = "discounts"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(64), unique=True, nullable=False, index=True)
    kind = Column(Enum(DiscountKind), nullable=False, default=DiscountKind.PERCENTAGE)
    value = Column(Numeric(10, 2), nullable=False)
    enabled = Column(Boolean, nullable=False, default=True, index=True)
    valid_from = Column(DateTime, nullable=True)
    valid_until = Column(DateTime, nullable=True)
    description = Column(String(500), nullable=True)
    # Soft delete; redemptions outlive the code
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    redemptions = relationship("DiscountRedemption", back_populates="discount")

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def redemption_count(self) -> int:
        return len(self.redemptions)

    @staticmethod
    def normalize_code(code: str) -> str:
        return code.strip().upper()


class DiscountRedemption(Base):
    """One buyer's single use of a discount.

    The unique constraint is what makes "add buyer if absent" atomic: a
    second insert for the same pair fails instead of double-redeeming.
    """

    __tablename__ = "discount_redemptions"
    __table_args__ = (
        UniqueConstraint("discount_id", "buyer_id", name="uq_discount_redemption_buyer"),
    )

    id = Column(Integer, primary_key=True, index=True)
    discount_id = Column(Integer, ForeignKey("discounts.id"), nullable=False)
    buyer_id = Column(String(64), nullable=False)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=True)
    redeemed_at = Column(DateTime, server_default=func.now())

    discount = relationship("Discount", back_populates="redemptions")
