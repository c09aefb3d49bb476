from storefront.services import inventory_service, stock_view_service


def test_view_includes_products_without_inventory(laptop, jacket, sneakers, main_warehouse, coastal_warehouse):
    inventory_service.adjust_stock(laptop.id, main_warehouse.id, 50)
    inventory_service.adjust_stock(laptop.id, coastal_warehouse.id, 20)
    inventory_service.adjust_stock(jacket.id, main_warehouse.id, 100)

    view = {row["sku"]: row["total_quantity"] for row in stock_view_service.product_stock_view()}

    assert view == {"LAP-001": 70, "CLO-001": 100, "SHO-001": 0}


def test_view_reflects_latest_writes(laptop, main_warehouse):
    inventory_service.adjust_stock(laptop.id, main_warehouse.id, 50)
    assert stock_view_service.product_stock_row(laptop.id)["total_quantity"] == 50

    inventory_service.adjust_stock(laptop.id, main_warehouse.id, -30)
    assert stock_view_service.product_stock_row(laptop.id)["total_quantity"] == 20


def test_row_for_missing_product(db_session):
    assert stock_view_service.product_stock_row(999) is None
