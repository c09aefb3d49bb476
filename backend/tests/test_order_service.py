import pytest

from storefront.extensions import db
from storefront.models import Order, OrderItem, Payment
from storefront.services import catalog_service, identity_service, order_service, payment_service
from storefront.validation import (
    ConstraintViolationError,
    DuplicateKeyError,
    EmptyOrderError,
    InvalidQuantityError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)


@pytest.fixture
def order(alice, laptop, jacket):
    return order_service.create_order(
        alice.id,
        [{"product_id": laptop.id, "quantity": 1}, {"product_id": jacket.id, "quantity": 1}],
    )


def _pay_in_full(order):
    return payment_service.add_payment(order.id, order.total_amount_cents, "card")


class TestCreateOrder:
    def test_total_is_sum_of_snapshotted_lines(self, order, laptop, jacket):
        assert order.status == "pending"
        assert order.currency == "USD"
        assert order.total_amount_cents == 80500
        assert [(i.order_item_id, i.product_id, i.unit_price_cents) for i in order.items] == [
            (1, laptop.id, 75000),
            (2, jacket.id, 5500),
        ]
        assert order_service.order_items_total_cents(order.id) == 80500

    def test_order_numbers_are_sequential(self, order, alice, sneakers):
        second = order_service.create_order(alice.id, [(sneakers.id, 2)])

        assert order.order_number == "ORD-000001"
        assert second.order_number == "ORD-000002"
        assert order_service.get_order_by_number("ORD-000002").id == second.id

    def test_explicit_order_number_must_be_unique(self, order, alice, sneakers):
        with pytest.raises(DuplicateKeyError):
            order_service.create_order(alice.id, [(sneakers.id, 1)], order_number=order.order_number)

    def test_supplied_number_is_skipped_by_the_sequence(self, order, alice, sneakers):
        manual = order_service.create_order(alice.id, [(sneakers.id, 1)], order_number="ORD-000002")

        numbers = [
            order_service.create_order(alice.id, [(sneakers.id, 1)]).order_number
            for _ in range(3)
        ]

        assert manual.order_number == "ORD-000002"
        assert numbers == ["ORD-000003", "ORD-000004", "ORD-000005"]
        assert db.session.query(Order).count() == 5

    def test_price_change_does_not_touch_existing_orders(self, order, laptop):
        catalog_service.update_product(laptop.id, {"price_cents": 99900})

        item = db.session.get(OrderItem, (order.id, 1))
        assert item.unit_price_cents == 75000
        assert db.session.get(Order, order.id).total_amount_cents == 80500

    def test_line_total(self, alice, sneakers):
        order = order_service.create_order(alice.id, [{"product_id": sneakers.id, "quantity": 3}])

        item = order.items[0]
        assert item.line_total_cents == 22500
        assert item.line_total_cents == item.quantity * item.unit_price_cents
        assert order.total_amount_cents == 22500

    def test_empty_order_is_rejected(self, alice):
        with pytest.raises(EmptyOrderError):
            order_service.create_order(alice.id, [])

        assert db.session.query(Order).count() == 0

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, True, "2"])
    def test_bad_quantity_is_rejected(self, alice, laptop, quantity):
        with pytest.raises(InvalidQuantityError):
            order_service.create_order(alice.id, [{"product_id": laptop.id, "quantity": quantity}])

        assert db.session.query(Order).count() == 0

    def test_missing_product_rolls_back_everything(self, alice, laptop):
        with pytest.raises(NotFoundError) as excinfo:
            order_service.create_order(alice.id, [(laptop.id, 1), (999, 1)])

        assert excinfo.value.details["product_ids"] == [999]
        assert db.session.query(Order).count() == 0
        assert db.session.query(OrderItem).count() == 0

    def test_inactive_product_cannot_be_ordered(self, alice, laptop):
        catalog_service.update_product(laptop.id, {"is_active": False})

        with pytest.raises(ConstraintViolationError):
            order_service.create_order(alice.id, [(laptop.id, 1)])

    def test_inactive_user_cannot_order(self, bob, laptop):
        identity_service.update_user(bob.id, {"is_active": False})

        with pytest.raises(ConstraintViolationError):
            order_service.create_order(bob.id, [(laptop.id, 1)])

    def test_unknown_user(self, db_session, laptop):
        with pytest.raises(NotFoundError):
            order_service.create_order(999, [(laptop.id, 1)])

    def test_address_of_another_user_is_rejected(self, alice, bob, laptop):
        bobs = identity_service.add_address(bob.id, "1 Side St", "Nakuru", "Kenya")

        with pytest.raises(ConstraintViolationError):
            order_service.create_order(alice.id, [(laptop.id, 1)], shipping_address_id=bobs.id)

    def test_currency_is_normalized(self, alice, laptop):
        order = order_service.create_order(alice.id, [(laptop.id, 1)], currency="kes")
        assert order.currency == "KES"

        with pytest.raises(ValidationError):
            order_service.create_order(alice.id, [(laptop.id, 1)], currency="shilling")


class TestOrderItems:
    def test_add_item_recomputes_total(self, order, sneakers):
        item = order_service.add_order_item(order.id, sneakers.id, 2)

        assert item.order_item_id == 3
        assert db.session.get(Order, order.id).total_amount_cents == 80500 + 15000
        assert order_service.find_total_mismatches() == []

    def test_items_are_locked_after_payment(self, order, sneakers):
        payment_service.add_payment(order.id, 1000, "card")

        with pytest.raises(ConstraintViolationError):
            order_service.add_order_item(order.id, sneakers.id, 1)

    def test_items_are_locked_after_pending(self, order, sneakers):
        order_service.cancel_order(order.id)

        with pytest.raises(ConstraintViolationError):
            order_service.add_order_item(order.id, sneakers.id, 1)

    def test_direct_item_delete_is_refused(self, order):
        item = db.session.get(OrderItem, (order.id, 1))
        db.session.delete(item)

        with pytest.raises(ConstraintViolationError):
            db.session.flush()
        db.session.rollback()

        assert db.session.query(OrderItem).filter_by(order_id=order.id).count() == 2

    def test_removing_item_from_collection_is_refused(self, order):
        fresh = db.session.get(Order, order.id)
        fresh.items.pop()

        with pytest.raises(ConstraintViolationError):
            db.session.flush()
        db.session.rollback()

        assert db.session.query(OrderItem).filter_by(order_id=order.id).count() == 2


class TestTransitions:
    def test_happy_path(self, order):
        _pay_in_full(order)
        assert db.session.get(Order, order.id).status == "paid"

        assert order_service.transition_order(order.id, "shipped").status == "shipped"
        assert order_service.transition_order(order.id, "delivered").status == "delivered"

    def test_same_status_is_a_noop(self, order):
        assert order_service.transition_order(order.id, "pending").status == "pending"

    @pytest.mark.parametrize("target", ["shipped", "delivered"])
    def test_pending_cannot_skip_ahead(self, order, target):
        with pytest.raises(InvalidTransitionError):
            order_service.transition_order(order.id, target)

        assert db.session.get(Order, order.id).status == "pending"

    def test_paid_cannot_be_cancelled(self, order):
        _pay_in_full(order)

        with pytest.raises(InvalidTransitionError):
            order_service.cancel_order(order.id)

    def test_shipped_can_be_cancelled(self, order):
        _pay_in_full(order)
        order_service.transition_order(order.id, "shipped")

        assert order_service.cancel_order(order.id).status == "cancelled"

    def test_terminal_states(self, order):
        order_service.cancel_order(order.id)

        for target in ("pending", "paid", "shipped", "delivered"):
            with pytest.raises(InvalidTransitionError):
                order_service.transition_order(order.id, target)

    def test_unknown_status(self, order):
        with pytest.raises(ValidationError):
            order_service.transition_order(order.id, "lost")

    def test_paid_requires_full_payment(self, order):
        payment_service.add_payment(order.id, 50000, "card")

        with pytest.raises(ConstraintViolationError) as excinfo:
            order_service.transition_order(order.id, "paid")

        assert excinfo.value.details["paid_cents"] == 50000
        assert db.session.get(Order, order.id).status == "pending"

    def test_paid_requires_matching_total(self, order):
        db.session.query(Order).filter_by(id=order.id).update({"total_amount_cents": 1})
        db.session.commit()

        with pytest.raises(ConstraintViolationError) as excinfo:
            order_service.transition_order(order.id, "paid")

        assert excinfo.value.details["items_total_cents"] == 80500


class TestDeleteAndAudit:
    def test_delete_order_cascades(self, order):
        payment_service.add_payment(order.id, 1000, "card")
        order_id = order.id

        order_service.delete_order(order_id)

        assert db.session.get(Order, order_id) is None
        assert db.session.query(OrderItem).filter_by(order_id=order_id).count() == 0
        assert db.session.query(Payment).filter_by(order_id=order_id).count() == 0

    def test_delete_missing_order(self, db_session):
        with pytest.raises(NotFoundError):
            order_service.delete_order(999)

    def test_find_total_mismatches(self, order):
        assert order_service.find_total_mismatches() == []

        db.session.query(Order).filter_by(id=order.id).update({"total_amount_cents": 100})
        db.session.commit()

        assert order_service.find_total_mismatches() == [
            {
                "order_id": order.id,
                "order_number": order.order_number,
                "status": "pending",
                "total_amount_cents": 100,
                "items_total_cents": 80500,
            }
        ]

    def test_list_orders_filters(self, order, alice, bob, sneakers):
        order_service.create_order(bob.id, [(sneakers.id, 1)])

        assert [o.id for o in order_service.list_orders(user_id=alice.id)] == [order.id]
        assert len(order_service.list_orders(status="pending")) == 2
        assert order_service.list_orders(status="paid") == []
