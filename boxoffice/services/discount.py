"""Discount ledger: quoting and single-use-per-buyer redemption."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from boxoffice.errors import ErrorCode, NotFoundError, ValidationError
from boxoffice.models.discount import Discount, DiscountKind, DiscountRedemption
from boxoffice.schemas.discount import DiscountCreate, DiscountUpdate

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")
CLEARABLE_FIELDS = {"valid_from", "valid_until", "description"}


def round2(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class DiscountQuote:
    code: str
    kind: DiscountKind
    value: Decimal
    subtotal: Decimal
    discount_amount: Decimal
    final_amount: Decimal


class DiscountService:
    @staticmethod
    def compute(kind: DiscountKind, value: Decimal, subtotal: Decimal) -> tuple[Decimal, Decimal]:
        """Return ``(discount_amount, final_amount)`` for a subtotal."""
        subtotal = Decimal(subtotal)
        value = Decimal(value)
        if kind == DiscountKind.PERCENTAGE:
            amount = round2(subtotal * value / 100)
        else:
            amount = min(value, subtotal)
        return amount, round2(subtotal - amount)

    @staticmethod
    def get_by_code(db: Session, code: str, include_deleted: bool = False) -> Optional[Discount]:
        query = db.query(Discount).filter(Discount.code == Discount.normalize_code(code))
        if not include_deleted:
            query = query.filter(Discount.deleted_at.is_(None))
        return query.first()

    @staticmethod
    def has_redeemed(db: Session, discount_id: int, buyer_id: str) -> bool:
        return db.query(DiscountRedemption).filter(
            DiscountRedemption.discount_id == discount_id,
            DiscountRedemption.buyer_id == buyer_id
        ).first() is not None

    @staticmethod
    def code_redeemed_by(db: Session, code: str, buyer_id: str) -> bool:
        discount = DiscountService.get_by_code(db, code, include_deleted=True)
        return discount is not None and DiscountService.has_redeemed(db, discount.id, buyer_id)

    @staticmethod
    def quote(
        db: Session,
        code: str,
        buyer_id: str,
        subtotal: Decimal,
        now: Optional[datetime] = None
    ) -> DiscountQuote:
        """
        Price a discount for a buyer without consuming it.

        Raises:
            NotFoundError: the code does not exist.
            ValidationError: the code is disabled, outside its window or was
                already redeemed by this buyer, or the subtotal is invalid.
        """
        if not code or not code.strip():
            raise ValidationError(ErrorCode.INVALID_DISCOUNT, "Please provide a discount code")
        if subtotal is None or Decimal(subtotal) < 0:
            raise ValidationError(ErrorCode.INVALID_AMOUNT, "Invalid total amount")

        discount = DiscountService.get_by_code(db, code)
        if not discount:
            raise NotFoundError(ErrorCode.DISCOUNT_NOT_FOUND, "Discount code not found")

        now = now or datetime.utcnow()
        if not discount.enabled:
            raise ValidationError(ErrorCode.DISCOUNT_DISABLED, "This discount code is disabled")
        if discount.valid_from and now < discount.valid_from:
            raise ValidationError(ErrorCode.DISCOUNT_NOT_STARTED, "This discount code is not valid yet")
        if discount.valid_until and now > discount.valid_until:
            raise ValidationError(ErrorCode.DISCOUNT_EXPIRED, "This discount code has expired")
        if DiscountService.has_redeemed(db, discount.id, buyer_id):
            raise ValidationError(
                ErrorCode.DISCOUNT_ALREADY_USED,
                "You have already used this discount code (limited to 1 use per user)"
            )

        amount, final = DiscountService.compute(discount.kind, discount.value, subtotal)
        return DiscountQuote(
            code=discount.code,
            kind=discount.kind,
            value=Decimal(discount.value),
            subtotal=round2(subtotal),
            discount_amount=amount,
            final_amount=final
        )

    @staticmethod
    def redeem(
        db: Session,
        code: str,
        buyer_id: str,
        reservation_id: Optional[int] = None
    ) -> bool:
        """
        Record the buyer's use of a discount. Commits its own transaction.

        Returns False when the buyer had already redeemed the code; a second
        call for the same buyer is a no-op.
        """
        discount = DiscountService.get_by_code(db, code, include_deleted=True)
        if not discount:
            raise NotFoundError(ErrorCode.DISCOUNT_NOT_FOUND, "Discount code not found")

        db.add(DiscountRedemption(
            discount_id=discount.id,
            buyer_id=buyer_id,
            reservation_id=reservation_id
        ))
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.warning(f"Discount {discount.code} already redeemed by buyer {buyer_id}")
            return False

        logger.info(f"Discount {discount.code} redeemed by buyer {buyer_id}")
        return True

    @staticmethod
    def _validate_value(kind: DiscountKind, value: Decimal) -> None:
        if value < 0:
            raise ValidationError(
                ErrorCode.INVALID_DISCOUNT,
                "Discount value must be greater than or equal to 0"
            )
        if kind == DiscountKind.PERCENTAGE and value > 100:
            raise ValidationError(
                ErrorCode.INVALID_DISCOUNT,
                "Percentage discount must not exceed 100%"
            )

    @staticmethod
    def _ensure_code_free(db: Session, code: str) -> None:
        if DiscountService.get_by_code(db, code, include_deleted=True):
            raise ValidationError(ErrorCode.DUPLICATE_DISCOUNT_CODE, "This discount code already exists")

    @staticmethod
    def get(db: Session, discount_id: int) -> Discount:
        discount = db.query(Discount).filter(
            Discount.id == discount_id,
            Discount.deleted_at.is_(None)
        ).first()
        if not discount:
            raise NotFoundError(ErrorCode.DISCOUNT_NOT_FOUND, "Discount not found")
        return discount

    @staticmethod
    def list_all(db: Session) -> list[Discount]:
        return db.query(Discount).filter(
            Discount.deleted_at.is_(None)
        ).order_by(Discount.created_at.desc(), Discount.id.desc()).all()

    @staticmethod
    def create(db: Session, data: DiscountCreate) -> Discount:
        """Create a code, or bring a deleted one back with its redemption history."""
        DiscountService._validate_value(data.kind, data.value)

        discount = DiscountService.get_by_code(db, data.code, include_deleted=True)
        if discount and not discount.is_deleted:
            raise ValidationError(ErrorCode.DUPLICATE_DISCOUNT_CODE, "This discount code already exists")

        restored = discount is not None
        if discount is None:
            discount = Discount(code=Discount.normalize_code(data.code))
            db.add(discount)

        discount.kind = data.kind
        discount.value = data.value
        discount.enabled = data.enabled
        discount.valid_from = data.valid_from or datetime.utcnow()
        discount.valid_until = data.valid_until
        discount.description = data.description
        discount.deleted_at = None
        db.commit()
        db.refresh(discount)
        logger.info(f"{'Restored' if restored else 'Created'} discount {discount.code}")
        return discount

    @staticmethod
    def update(db: Session, discount_id: int, data: DiscountUpdate) -> Discount:
        discount = DiscountService.get(db, discount_id)
        changes = {
            field: new_value
            for field, new_value in data.model_dump(exclude_unset=True).items()
            if new_value is not None or field in CLEARABLE_FIELDS
        }

        kind = changes.get("kind") or discount.kind
        value = changes.get("value", discount.value)
        if value is not None:
            DiscountService._validate_value(kind, Decimal(value))

        code = changes.pop("code", None)
        if code and Discount.normalize_code(code) != discount.code:
            DiscountService._ensure_code_free(db, code)
            discount.code = Discount.normalize_code(code)

        for field, new_value in changes.items():
            setattr(discount, field, new_value)

        db.commit()
        db.refresh(discount)
        return discount

    @staticmethod
    def toggle(db: Session, discount_id: int) -> Discount:
        discount = DiscountService.get(db, discount_id)
        discount.enabled = not discount.enabled
        db.commit()
        db.refresh(discount)
        logger.info(f"Discount {discount.code} enabled={discount.enabled}")
        return discount

    @staticmethod
    def delete(db: Session, discount_id: int) -> None:
        discount = DiscountService.get(db, discount_id)
        discount.enabled = False
        discount.deleted_at = datetime.utcnow()
        db.commit()
        logger.info(f"Deleted discount {discount.code}")
