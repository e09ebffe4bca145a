import pytest
from bson import ObjectId

from errors import InsufficientStockError, NotFoundError, ValidationError
from inventory import InventoryLedger


@pytest.fixture()
def ledger(stores):
    return InventoryLedger(stores.products)


class TestCheckAvailable:

    def test_returns_product_when_enough_stock(self, ledger, make_product):
        product = make_product(stock=5)
        assert ledger.check_available(product["id"], 5)["id"] == product["id"]

    def test_insufficient_stock_carries_name_and_available(self, ledger, make_product):
        product = make_product(name="Chelsea Boot", stock=2)
        with pytest.raises(InsufficientStockError) as exc_info:
            ledger.check_available(product["id"], 3)
        err = exc_info.value
        assert err.product_name == "Chelsea Boot"
        assert err.available == 2
        assert err.requested == 3
        assert "Available: 2" in err.message

    def test_missing_product(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.check_available(str(ObjectId()), 1)

    def test_malformed_id_is_a_validation_error(self, ledger):
        with pytest.raises(ValidationError, match="Invalid Product ID"):
            ledger.check_available("not-an-id", 1)


class TestDecrement:

    def test_takes_stock(self, ledger, stores, make_product):
        product = make_product(stock=5)
        ledger.decrement(product["id"], 3)
        assert stores.products.get(product["id"])["stock"] == 2

    def test_never_goes_negative(self, ledger, stores, make_product):
        product = make_product(stock=2)
        with pytest.raises(InsufficientStockError):
            ledger.decrement(product["id"], 3)
        assert stores.products.get(product["id"])["stock"] == 2

    def test_deleted_product(self, ledger, stores, make_product):
        product = make_product()
        stores.products.delete(product["id"])
        with pytest.raises(NotFoundError):
            ledger.decrement(product["id"], 1)

    def test_restock(self, ledger, stores, make_product):
        product = make_product(stock=1)
        ledger.restock(product["id"], 4)
        assert stores.products.get(product["id"])["stock"] == 5
