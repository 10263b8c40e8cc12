from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from conftest import add_coupon, days
from storefront.data.database import Base
from storefront.data.models import CouponModel, CouponRedemptionModel, OrderModel
from storefront.domain.errors import CouponNotFound, DuplicateCoupon, InvalidCoupon
from storefront.domain.types import CouponStatus, CouponType
from storefront.repos.unit_of_work import UnitOfWork
from storefront.services import coupon_service as cs
from storefront.services.coupon_service import CouponService, compute_discount


def _order(db, user_id=None):
    order = OrderModel(
        user_id=user_id,
        session_id=None if user_id else "guest",
        status="PENDING",
        subtotal=Decimal("100.00"),
        discount_amount=Decimal("0.00"),
        total=Decimal("100.00"),
    )
    db.add(order)
    db.commit()
    return order


def test_percentage_discount_is_capped(db, coupon_service):
    add_coupon(db, "HALF", "PERCENTAGE", "50", max_discount_amount=Decimal("20"))

    result = coupon_service.validate("HALF", Decimal("1000"))

    assert result.valid
    assert result.discount_amount == Decimal("20.00")
    assert result.final_amount == Decimal("980.00")


def test_percentage_discount_rounds_half_up(db, coupon_service):
    add_coupon(db, "TEN", "PERCENTAGE", "10")

    result = coupon_service.validate("ten", Decimal("0.25"))

    assert result.discount_amount == Decimal("0.03")
    assert result.code == "TEN"


def test_fixed_amount_never_exceeds_cart_total(db, coupon_service):
    add_coupon(db, "FIVE", "FIXED_AMOUNT", "5")

    assert coupon_service.validate("FIVE", Decimal("3.00")).discount_amount == Decimal("3.00")
    assert coupon_service.validate("FIVE", Decimal("30.00")).final_amount == Decimal("25.00")


def test_free_shipping_leaves_merchandise_total(db, coupon_service):
    add_coupon(db, "SHIP", "FREE_SHIPPING", "0")

    result = coupon_service.validate("SHIP", Decimal("40.00"))

    assert result.valid
    assert result.discount_amount == Decimal("0.00")
    assert result.final_amount == Decimal("40.00")


def test_compute_discount():
    assert compute_discount(CouponType.PERCENTAGE, Decimal("50"), Decimal("1000"), Decimal("20")) == Decimal("20")
    assert compute_discount(CouponType.FIXED_AMOUNT, Decimal("15"), Decimal("10")) == Decimal("10")


@pytest.mark.parametrize(
    "fields, reason",
    [
        ({"status": "INACTIVE"}, cs.NOT_ACTIVE),
        ({"valid_from": days(1)}, cs.NOT_YET_VALID),
        ({"valid_until": days(-1)}, cs.EXPIRED),
        ({"usage_limit": 2, "usage_count": 2}, cs.USAGE_LIMIT_REACHED),
        ({"allowed_products": [42]}, cs.NOT_APPLICABLE),
        ({"allowed_categories": [9]}, cs.NOT_APPLICABLE),
    ],
)
def test_rejections(db, coupon_service, fields, reason):
    add_coupon(db, "CODE", **fields)

    result = coupon_service.validate("CODE", Decimal("50.00"), product_ids=[1], category_ids=[3])

    assert not result.valid
    assert result.reason == reason
    assert result.discount_amount == Decimal("0.00")


def test_unknown_code(coupon_service):
    assert coupon_service.validate("NOPE", Decimal("10")).reason == cs.INVALID_CODE


def test_first_failing_check_is_reported(db, coupon_service):
    add_coupon(db, "OLD", status="INACTIVE", valid_until=days(-3), min_purchase_amount=Decimal("100"))

    assert coupon_service.validate("OLD", Decimal("10")).reason == cs.NOT_ACTIVE


def test_minimum_purchase(db, coupon_service):
    add_coupon(db, "BIG", min_purchase_amount=Decimal("50"))

    result = coupon_service.validate("BIG", Decimal("49.99"))

    assert result.reason == "Minimum purchase amount of $50.00 required"
    assert coupon_service.validate("BIG", Decimal("50.00")).valid


def test_category_match_is_any_of(db, coupon_service):
    add_coupon(db, "CAT", allowed_categories=[3, 4])

    assert coupon_service.validate("CAT", Decimal("10"), category_ids=[1, 4]).valid


def test_per_user_limit(db, coupon_service):
    coupon = add_coupon(db, "ONCE", usage_limit_per_user=1)
    order = _order(db, user_id=5)
    db.add(CouponRedemptionModel(coupon_id=coupon.id, user_id=5, order_id=order.id, discount_amount=Decimal("1")))
    db.commit()

    assert coupon_service.validate("ONCE", Decimal("10"), user_id=5).reason == cs.USER_LIMIT_REACHED
    assert coupon_service.validate("ONCE", Decimal("10"), user_id=6).valid
    assert coupon_service.validate("ONCE", Decimal("10")).reason == cs.SIGN_IN_REQUIRED


def test_validity_window_uses_now(db, coupon_service):
    add_coupon(
        db,
        "WINDOW",
        valid_from=datetime(2030, 1, 1, tzinfo=timezone.utc),
        valid_until=datetime(2030, 2, 1, tzinfo=timezone.utc),
    )

    assert coupon_service.validate("WINDOW", Decimal("10"), now=datetime(2030, 1, 15, tzinfo=timezone.utc)).valid
    assert (
        coupon_service.validate("WINDOW", Decimal("10"), now=datetime(2030, 3, 1, tzinfo=timezone.utc)).reason
        == cs.EXPIRED
    )


def test_validate_does_not_consume_uses(db, coupon_service):
    coupon = add_coupon(db, "PEEK", usage_limit=1)

    coupon_service.validate("PEEK", Decimal("10"))
    coupon_service.validate("PEEK", Decimal("10"))

    db.refresh(coupon)
    assert coupon.usage_count == 0


def test_redeem_records_use_and_enforces_limit(db, uow, coupon_service):
    coupon = add_coupon(db, "LAST", usage_limit=1)
    first, second = _order(db, 1), _order(db, 2)
    validation = coupon_service.validate("LAST", Decimal("100"))

    coupon_service.redeem(validation, 1, first.id)
    uow.commit()

    # the same validation result cannot take a use that no longer exists
    with pytest.raises(InvalidCoupon) as exc:
        coupon_service.redeem(validation, 2, second.id)
    uow.rollback()

    db.refresh(coupon)
    assert exc.value.reason == cs.USAGE_LIMIT_REACHED
    assert coupon.usage_count == 1
    assert [r.order_id for r in coupon_service.user_history(1)] == [first.id]


def test_create_coupon_normalizes_and_rejects_duplicates(coupon_service):
    coupon = coupon_service.create_coupon(" summer ", CouponType.PERCENTAGE, Decimal("15"), usage_limit=3)

    assert coupon.code == "SUMMER"
    assert coupon.usage_count == 0
    with pytest.raises(DuplicateCoupon):
        coupon_service.create_coupon("Summer", CouponType.FIXED_AMOUNT, Decimal("5"))
    with pytest.raises(InvalidCoupon):
        coupon_service.create_coupon("TOO-MUCH", CouponType.PERCENTAGE, Decimal("120"))


def test_coupon_stats(db, uow, coupon_service):
    add_coupon(db, "STATS", "FIXED_AMOUNT", "5", usage_limit=10)
    for user_id in (1, 1, 2):
        order = _order(db, user_id)
        coupon_service.redeem(coupon_service.validate("STATS", Decimal("100")), user_id, order.id)
        uow.commit()

    stats = coupon_service.coupon_stats("stats")

    assert stats["total_uses"] == 3
    assert stats["unique_users"] == 2
    assert stats["total_discount_given"] == Decimal("15.00")
    assert stats["remaining_uses"] == 7
    with pytest.raises(CouponNotFound):
        coupon_service.coupon_stats("MISSING")


def test_per_user_limit_holds_across_concurrent_checkouts(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'coupons.db'}")
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine, autoflush=False)

    setup = Session()
    add_coupon(setup, "ONCE", usage_limit_per_user=1)
    first, second = _order(setup, 5), _order(setup, 5)
    first_id, second_id = first.id, second.id
    setup.close()

    session_a, session_b = Session(), Session()
    svc_a, svc_b = CouponService(UnitOfWork(session_a)), CouponService(UnitOfWork(session_b))

    # both checkouts validate before either redeems
    validation_a = svc_a.validate("ONCE", Decimal("100"), user_id=5)
    validation_b = svc_b.validate("ONCE", Decimal("100"), user_id=5)
    assert validation_a.valid and validation_b.valid

    svc_a.redeem(validation_a, 5, first_id)
    session_a.commit()

    with pytest.raises(InvalidCoupon) as exc:
        svc_b.redeem(validation_b, 5, second_id)
    session_b.rollback()

    session_a.close()
    session_b.close()
    check = Session()
    coupon = check.query(CouponModel).filter_by(code="ONCE").one()
    uses = check.query(CouponRedemptionModel).count()
    check.close()
    engine.dispose()

    assert exc.value.reason == cs.USER_LIMIT_REACHED
    assert coupon.usage_count == 1
    assert uses == 1


def test_get_and_list_coupons(db, coupon_service):
    for code in ("A1", "B2", "C3"):
        add_coupon(db, code)

    page, total = coupon_service.list_coupons(page=1, limit=2)

    assert total == 3
    assert len(page) == 2
    assert coupon_service.get_coupon(page[0].id).code == page[0].code
    with pytest.raises(CouponNotFound):
        coupon_service.get_coupon(999)


def test_list_active(db, coupon_service):
    add_coupon(db, "LIVE")
    add_coupon(db, "OFF", status="INACTIVE")
    add_coupon(db, "LATER", valid_from=days(3))
    add_coupon(db, "GONE", valid_until=days(-3))
    add_coupon(db, "USED", usage_limit=1, usage_count=1)
    add_coupon(db, "WINDOW", valid_from=days(-1), valid_until=days(1))

    assert [c.code for c in coupon_service.list_active()] == ["LIVE", "WINDOW"]


def test_update_coupon(db, coupon_service):
    coupon = add_coupon(db, "EDIT", "FIXED_AMOUNT", "5")
    add_coupon(db, "TAKEN")

    updated = coupon_service.update_coupon(coupon.id, code=" edited ", discount_value=Decimal("7.5"), usage_count=99)

    db.refresh(updated)
    assert updated.code == "EDITED"
    assert updated.discount_value == Decimal("7.50")
    assert updated.usage_count == 0
    with pytest.raises(DuplicateCoupon):
        coupon_service.update_coupon(coupon.id, code="taken")
    with pytest.raises(InvalidCoupon):
        coupon_service.update_coupon(coupon.id, type=CouponType.PERCENTAGE, discount_value=Decimal("150"))
    with pytest.raises(CouponNotFound):
        coupon_service.update_coupon(999, description="x")


def test_deactivated_coupon_stops_validating(db, coupon_service):
    coupon = add_coupon(db, "RETIRE")

    coupon_service.deactivate_coupon(coupon.id)

    db.refresh(coupon)
    assert coupon.status == CouponStatus.INACTIVE.value
    assert coupon_service.validate("RETIRE", Decimal("10")).reason == cs.NOT_ACTIVE
