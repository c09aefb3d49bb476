import pytest

from storefront.extensions import db
from storefront.models import InventoryRow
from storefront.services import inventory_service
from storefront.validation import InsufficientStockError, InvalidQuantityError, NotFoundError


def test_first_adjustment_creates_row(laptop, main_warehouse):
    row = inventory_service.adjust_stock(laptop.id, main_warehouse.id, 50)

    assert row.quantity == 50
    assert row.last_updated is not None
    assert inventory_service.get_stock(laptop.id, main_warehouse.id) == 50


def test_negative_first_adjustment_clamps_to_zero(laptop, main_warehouse):
    row = inventory_service.adjust_stock(laptop.id, main_warehouse.id, -5)

    assert row.quantity == 0


def test_increments_and_decrements(laptop, main_warehouse):
    inventory_service.adjust_stock(laptop.id, main_warehouse.id, 50)
    inventory_service.adjust_stock(laptop.id, main_warehouse.id, -20)
    row = inventory_service.adjust_stock(laptop.id, main_warehouse.id, 5)

    assert row.quantity == 35
    assert row.version_id >= 3


def test_draining_to_zero_is_allowed(laptop, main_warehouse):
    inventory_service.adjust_stock(laptop.id, main_warehouse.id, 10)

    assert inventory_service.adjust_stock(laptop.id, main_warehouse.id, -10).quantity == 0


def test_insufficient_stock_leaves_row_unchanged(laptop, main_warehouse):
    inventory_service.adjust_stock(laptop.id, main_warehouse.id, 10)

    with pytest.raises(InsufficientStockError) as excinfo:
        inventory_service.adjust_stock(laptop.id, main_warehouse.id, -11)

    assert excinfo.value.details["quantity"] == 10
    assert excinfo.value.details["delta"] == -11
    assert inventory_service.get_stock(laptop.id, main_warehouse.id) == 10


@pytest.mark.parametrize("delta", [0, 1.5, True, "3"])
def test_bad_delta(laptop, main_warehouse, delta):
    with pytest.raises(InvalidQuantityError):
        inventory_service.adjust_stock(laptop.id, main_warehouse.id, delta)


def test_unknown_product_or_warehouse(laptop, main_warehouse):
    with pytest.raises(NotFoundError):
        inventory_service.adjust_stock(999, main_warehouse.id, 5)
    with pytest.raises(NotFoundError):
        inventory_service.adjust_stock(laptop.id, 999, 5)

    assert db.session.query(InventoryRow).count() == 0


def test_stock_across_warehouses(laptop, jacket, main_warehouse, coastal_warehouse):
    inventory_service.adjust_stock(laptop.id, main_warehouse.id, 50)
    inventory_service.adjust_stock(laptop.id, coastal_warehouse.id, 20)

    assert inventory_service.stock_across_warehouses(laptop.id) == 70
    assert inventory_service.stock_across_warehouses(jacket.id) == 0
    assert [r.warehouse_id for r in inventory_service.list_stock(laptop.id)] == [
        main_warehouse.id,
        coastal_warehouse.id,
    ]


def test_stock_across_warehouses_unknown_product(db_session):
    with pytest.raises(NotFoundError):
        inventory_service.stock_across_warehouses(999)


def test_delete_warehouse_removes_its_rows(laptop, main_warehouse, coastal_warehouse):
    inventory_service.adjust_stock(laptop.id, main_warehouse.id, 50)
    inventory_service.adjust_stock(laptop.id, coastal_warehouse.id, 20)

    inventory_service.delete_warehouse(main_warehouse.id)

    assert inventory_service.stock_across_warehouses(laptop.id) == 20
