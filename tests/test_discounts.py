from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from boxoffice.errors import ErrorCode, NotFoundError, ValidationError
from boxoffice.models.discount import DiscountKind, DiscountRedemption
from boxoffice.schemas.discount import DiscountCreate, DiscountUpdate
from boxoffice.services.discount import DiscountService, round2


@pytest.mark.parametrize("kind, value, subtotal, amount, final", [
    (DiscountKind.PERCENTAGE, "10", "100.00", "10.00", "90.00"),
    (DiscountKind.PERCENTAGE, "15", "33.33", "5.00", "28.33"),
    (DiscountKind.PERCENTAGE, "12.5", "0.20", "0.03", "0.17"),
    (DiscountKind.PERCENTAGE, "100", "42.00", "42.00", "0.00"),
    (DiscountKind.FIXED, "5", "20.00", "5", "15.00"),
    (DiscountKind.FIXED, "50", "20.00", "20.00", "0.00"),
])
def test_compute(kind, value, subtotal, amount, final):
    discount_amount, final_amount = DiscountService.compute(kind, Decimal(value), Decimal(subtotal))

    assert discount_amount == Decimal(amount)
    assert final_amount == Decimal(final)
    assert final_amount >= 0


def test_round2_rounds_half_up():
    assert round2(Decimal("2.345")) == Decimal("2.35")
    assert round2(Decimal("2.344")) == Decimal("2.34")


def test_quote_does_not_consume(db, make_discount, buyer):
    make_discount(code="SPRING", kind=DiscountKind.FIXED, value="7.50")

    first = DiscountService.quote(db, "spring", buyer.id, Decimal("30"))
    second = DiscountService.quote(db, " SPRING ", buyer.id, Decimal("30"))

    assert first == second
    assert first.code == "SPRING"
    assert first.discount_amount == Decimal("7.50")
    assert first.final_amount == Decimal("22.50")
    assert db.query(DiscountRedemption).count() == 0


def test_quote_unknown_code(db, buyer):
    with pytest.raises(NotFoundError) as exc_info:
        DiscountService.quote(db, "MISSING", buyer.id, Decimal("10"))

    assert exc_info.value.code == ErrorCode.DISCOUNT_NOT_FOUND


def test_quote_rejects_blank_code_and_negative_subtotal(db, buyer):
    with pytest.raises(ValidationError) as exc_info:
        DiscountService.quote(db, "   ", buyer.id, Decimal("10"))
    assert exc_info.value.code == ErrorCode.INVALID_DISCOUNT

    with pytest.raises(ValidationError) as exc_info:
        DiscountService.quote(db, "ANY", buyer.id, Decimal("-1"))
    assert exc_info.value.code == ErrorCode.INVALID_AMOUNT


def test_quote_disabled_code(db, make_discount, buyer):
    make_discount(code="OFF", enabled=False)

    with pytest.raises(ValidationError) as exc_info:
        DiscountService.quote(db, "OFF", buyer.id, Decimal("10"))

    assert exc_info.value.code == ErrorCode.DISCOUNT_DISABLED


def test_quote_respects_validity_window(db, make_discount, buyer):
    now = datetime.utcnow()
    make_discount(code="WINDOW", valid_from=now + timedelta(days=1), valid_until=now + timedelta(days=2))

    with pytest.raises(ValidationError) as exc_info:
        DiscountService.quote(db, "WINDOW", buyer.id, Decimal("10"), now=now)
    assert exc_info.value.code == ErrorCode.DISCOUNT_NOT_STARTED

    quote = DiscountService.quote(db, "WINDOW", buyer.id, Decimal("10"), now=now + timedelta(days=1, hours=1))
    assert quote.final_amount == Decimal("9.00")

    with pytest.raises(ValidationError) as exc_info:
        DiscountService.quote(db, "WINDOW", buyer.id, Decimal("10"), now=now + timedelta(days=3))
    assert exc_info.value.code == ErrorCode.DISCOUNT_EXPIRED


def test_redeem_is_single_use_per_buyer(db, make_discount, buyer, other_buyer):
    make_discount(code="ONCE")

    assert DiscountService.redeem(db, "ONCE", buyer.id) is True
    assert DiscountService.redeem(db, "once", buyer.id) is False
    assert DiscountService.redeem(db, "ONCE", other_buyer.id) is True
    assert db.query(DiscountRedemption).count() == 2

    with pytest.raises(ValidationError) as exc_info:
        DiscountService.quote(db, "ONCE", buyer.id, Decimal("10"))
    assert exc_info.value.code == ErrorCode.DISCOUNT_ALREADY_USED


def test_redeem_unknown_code(db, buyer):
    with pytest.raises(NotFoundError):
        DiscountService.redeem(db, "NOPE", buyer.id)


def test_create_normalizes_code_and_defaults_start(db):
    discount = DiscountService.create(db, DiscountCreate(code=" summer ", value=Decimal("20")))

    assert discount.code == "SUMMER"
    assert discount.kind == DiscountKind.PERCENTAGE
    assert discount.valid_from is not None
    assert discount.redemption_count == 0


def test_create_rejects_duplicate_code(db, make_discount):
    make_discount(code="TAKEN")

    with pytest.raises(ValidationError) as exc_info:
        DiscountService.create(db, DiscountCreate(code="taken", value=Decimal("5")))

    assert exc_info.value.code == ErrorCode.DUPLICATE_DISCOUNT_CODE


@pytest.mark.parametrize("kind, value", [
    (DiscountKind.PERCENTAGE, "101"),
    (DiscountKind.PERCENTAGE, "-1"),
    (DiscountKind.FIXED, "-0.01"),
])
def test_create_rejects_invalid_values(db, kind, value):
    with pytest.raises(ValidationError) as exc_info:
        DiscountService.create(db, DiscountCreate(code="BAD", kind=kind, value=Decimal(value)))

    assert exc_info.value.code == ErrorCode.INVALID_DISCOUNT


def test_update_changes_fields_and_keeps_required_ones(db, make_discount):
    discount = make_discount(code="EDIT", value="10")

    updated = DiscountService.update(db, discount.id, DiscountUpdate(value=Decimal("25"), kind=None))

    assert updated.value == Decimal("25")
    assert updated.kind == DiscountKind.PERCENTAGE


def test_update_validates_against_new_kind(db, make_discount):
    discount = make_discount(code="FLAT", kind=DiscountKind.FIXED, value="150")

    with pytest.raises(ValidationError):
        DiscountService.update(db, discount.id, DiscountUpdate(kind=DiscountKind.PERCENTAGE))


def test_update_rename_to_existing_code(db, make_discount):
    make_discount(code="FIRST")
    second = make_discount(code="SECOND")

    with pytest.raises(ValidationError) as exc_info:
        DiscountService.update(db, second.id, DiscountUpdate(code="first"))

    assert exc_info.value.code == ErrorCode.DUPLICATE_DISCOUNT_CODE


def test_toggle_and_delete(db, make_discount):
    discount = make_discount(code="FLIP")

    assert DiscountService.toggle(db, discount.id).enabled is False
    assert DiscountService.toggle(db, discount.id).enabled is True

    DiscountService.delete(db, discount.id)
    with pytest.raises(NotFoundError):
        DiscountService.get(db, discount.id)


def test_deleted_code_is_hidden_but_keeps_its_redemptions(db, make_discount, buyer, other_buyer):
    discount = make_discount(code="REPEAT")
    DiscountService.redeem(db, "REPEAT", buyer.id)

    DiscountService.delete(db, discount.id)

    assert DiscountService.list_all(db) == []
    with pytest.raises(NotFoundError):
        DiscountService.quote(db, "REPEAT", other_buyer.id, Decimal("10"))

    recreated = DiscountService.create(db, DiscountCreate(code="repeat", kind=DiscountKind.FIXED, value=Decimal("3")))

    assert recreated.id == discount.id
    assert recreated.enabled is True
    assert recreated.kind == DiscountKind.FIXED
    assert recreated.redemption_count == 1
    with pytest.raises(ValidationError) as exc_info:
        DiscountService.quote(db, "REPEAT", buyer.id, Decimal("10"))
    assert exc_info.value.code == ErrorCode.DISCOUNT_ALREADY_USED
    assert DiscountService.quote(db, "REPEAT", other_buyer.id, Decimal("10")).final_amount == Decimal("7.00")


def test_rename_onto_deleted_code_is_refused(db, make_discount):
    retired = make_discount(code="OLD")
    current = make_discount(code="NEW")
    DiscountService.delete(db, retired.id)

    with pytest.raises(ValidationError) as exc_info:
        DiscountService.update(db, current.id, DiscountUpdate(code="old"))

    assert exc_info.value.code == ErrorCode.DUPLICATE_DISCOUNT_CODE
