import pytest
from bson import ObjectId

from cart import CartEngine, compute_totals
from database import as_utc
from errors import InsufficientStock, Internal, InvalidInput, NotFound


@pytest.fixture
def engine(ctx):
    return CartEngine(ctx)


def assert_totals_consistent(cart):
    assert cart.total_amount == pytest.approx(sum(i.price_at_time * i.quantity for i in cart.items))
    assert cart.total_items == sum(i.quantity for i in cart.items)


def test_get_or_create_persists_empty_cart(engine, db):
    cart = engine.get_or_create_cart("u1")
    assert cart.items == []
    assert cart.total_amount == 0
    assert cart.total_items == 0
    assert cart.status == "active"
    assert db["cart"].count_documents({"user_id": "u1", "status": "active"}) == 1

    again = engine.get_or_create_cart("u1")
    assert again.id == cart.id
    assert db["cart"].count_documents({"user_id": "u1"}) == 1


def test_add_update_remove_example_flow(engine, make_product):
    p1 = make_product(price=100, stock=5)

    cart = engine.add_item("u1", p1, 2)
    assert len(cart.items) == 1
    assert cart.items[0].quantity == 2
    assert cart.items[0].price_at_time == 100
    assert cart.total_amount == 200
    assert cart.total_items == 2

    cart = engine.update_item("u1", p1, 5)
    assert cart.total_amount == 500
    assert cart.total_items == 5

    cart = engine.update_item("u1", p1, 0)
    assert cart.items == []
    assert cart.total_amount == 0
    assert cart.total_items == 0


def test_repeat_add_keeps_first_price_snapshot(engine, db, make_product, clock):
    p1 = make_product(name="Teak Chair", price=40.0, stock=10)
    engine.add_item("u1", p1, 1)

    db["product"].update_one({"_id": ObjectId(p1)}, {"$set": {"price": 55.0, "name": "Teak Chair v2"}})
    clock.advance(minutes=3)
    cart = engine.add_item("u1", p1, 2)

    assert len(cart.items) == 1
    line = cart.items[0]
    assert line.quantity == 3
    assert line.price_at_time == 40.0
    assert line.product_name == "Teak Chair"
    assert line.added_at == clock.now
    assert cart.total_amount == 120.0


def test_add_exactly_stock_only_appends_the_new_line(engine, make_product, clock):
    rug = make_product(name="Rug", price=35.5, stock=10)
    lamp = make_product(name="Lamp", price=20.0, stock=3)
    before = engine.add_item("u1", rug, 2).items[0]

    clock.advance(minutes=5)
    cart = engine.add_item("u1", lamp, 3)

    assert len(cart.items) == 2
    kept, added = cart.items
    assert kept.product_id == rug
    assert kept.quantity == before.quantity == 2
    assert kept.price_at_time == before.price_at_time == 35.5
    assert as_utc(kept.added_at) == as_utc(before.added_at)
    assert added.product_id == lamp
    assert added.quantity == 3
    assert added.price_at_time == 20.0
    assert added.added_at == clock.now
    assert cart.total_amount == 131.0
    assert cart.total_items == 5


def test_add_more_than_stock_is_rejected(engine, make_product, db):
    p1 = make_product(stock=3)
    with pytest.raises(InsufficientStock) as exc:
        engine.add_item("u1", p1, 4)
    assert exc.value.remaining == 3
    assert db["cart"].find_one({"user_id": "u1"})["items"] == []


def test_add_reports_remaining_quantity_for_existing_line(engine, make_product):
    p1 = make_product(stock=5)
    engine.add_item("u1", p1, 4)
    with pytest.raises(InsufficientStock) as exc:
        engine.add_item("u1", p1, 2)
    assert exc.value.remaining == 1
    assert "1 more" in exc.value.message

    cart = engine.find_active_cart("u1")
    assert cart.items[0].quantity == 4


@pytest.mark.parametrize("quantity", [0, -1])
def test_add_rejects_non_positive_quantity(engine, make_product, quantity):
    with pytest.raises(InvalidInput):
        engine.add_item("u1", make_product(), quantity)


def test_add_unknown_product(engine):
    with pytest.raises(NotFound):
        engine.add_item("u1", str(ObjectId()), 1)


def test_add_malformed_product_id(engine):
    with pytest.raises(InvalidInput):
        engine.add_item("u1", "not-an-id", 1)


def test_update_validation(engine, make_product):
    p1 = make_product(stock=5)
    p2 = make_product(name="Lamp", price=20, stock=5)

    with pytest.raises(InvalidInput):
        engine.update_item("u1", p1, -1)
    with pytest.raises(NotFound, match="Cart not found"):
        engine.update_item("u1", p1, 1)

    engine.add_item("u1", p1, 1)
    with pytest.raises(NotFound, match="Item not found"):
        engine.update_item("u1", p2, 1)
    with pytest.raises(InsufficientStock):
        engine.update_item("u1", p1, 6)


def test_update_sets_absolute_quantity(engine, make_product):
    p1 = make_product(price=10, stock=10)
    engine.add_item("u1", p1, 4)
    cart = engine.update_item("u1", p1, 2)
    assert cart.items[0].quantity == 2
    assert cart.total_amount == 20


def test_update_to_zero_removes_only_that_line(engine, make_product):
    p1 = make_product(price=10, stock=10)
    p2 = make_product(name="Rug", price=35.5, stock=10)
    engine.add_item("u1", p1, 1)
    engine.add_item("u1", p2, 2)

    cart = engine.update_item("u1", p1, 0)
    assert [i.product_id for i in cart.items] == [p2]
    assert cart.total_amount == 71.0
    assert cart.total_items == 2


def test_remove_and_clear(engine, make_product, db):
    p1 = make_product(price=10, stock=10)
    p2 = make_product(name="Rug", price=5, stock=10)

    with pytest.raises(NotFound):
        engine.remove_item("u1", p1)
    with pytest.raises(NotFound):
        engine.clear_cart("u1")

    engine.add_item("u1", p1, 1)
    engine.add_item("u1", p2, 3)
    cart = engine.remove_item("u1", p1)
    assert len(cart.items) == 1
    assert cart.total_amount == 15

    with pytest.raises(NotFound):
        engine.remove_item("u1", p1)

    cart = engine.clear_cart("u1")
    assert cart.items == []
    assert cart.total_amount == 0
    assert cart.total_items == 0
    stored = db["cart"].find_one({"user_id": "u1"})
    assert stored["status"] == "active"
    assert stored["items"] == []


def test_totals_hold_after_every_mutation(engine, make_product):
    p1 = make_product(price=19.99, stock=20)
    p2 = make_product(name="Mug", price=12.5, stock=20)
    p3 = make_product(name="Lamp", price=39.0, stock=20)

    steps = [
        lambda: engine.add_item("u1", p1, 3),
        lambda: engine.add_item("u1", p2, 1),
        lambda: engine.add_item("u1", p3, 2),
        lambda: engine.add_item("u1", p1, 1),
        lambda: engine.update_item("u1", p2, 7),
        lambda: engine.remove_item("u1", p3),
        lambda: engine.update_item("u1", p1, 0),
    ]
    for step in steps:
        cart = step()
        assert_totals_consistent(cart)
        stored = engine.find_active_cart("u1")
        assert stored.total_amount == cart.total_amount
        assert stored.total_items == cart.total_items


def test_version_increments_on_each_write(engine, make_product):
    p1 = make_product(stock=10)
    assert engine.get_or_create_cart("u1").version == 0
    assert engine.add_item("u1", p1, 1).version == 1
    assert engine.update_item("u1", p1, 2).version == 2


def test_concurrent_write_is_retried_not_lost(ctx, engine, make_product):
    sofa = make_product(price=100, stock=5)
    lamp = make_product(name="Lamp", price=20, stock=5)
    other = CartEngine(ctx)
    engine.get_or_create_cart("u1")

    original = engine._get_product
    calls = {"n": 0}

    def racing_get_product(oid):
        calls["n"] += 1
        if calls["n"] == 1:
            other.add_item("u1", lamp, 1)
        return original(oid)

    engine._get_product = racing_get_product
    cart = engine.add_item("u1", sofa, 2)

    assert calls["n"] == 2
    assert sorted(i.product_id for i in cart.items) == sorted([sofa, lamp])
    assert cart.total_amount == 220
    assert cart.total_items == 3


def test_gives_up_after_max_retries(ctx, engine, make_product):
    sofa = make_product(stock=50)
    lamp = make_product(name="Lamp", stock=50)
    other = CartEngine(ctx)
    engine.get_or_create_cart("u1")

    original = engine._get_product

    def always_racing(oid):
        other.add_item("u1", lamp, 1)
        return original(oid)

    engine._get_product = always_racing
    with pytest.raises(Internal):
        engine.add_item("u1", sofa, 1)


def test_carts_are_per_user(engine, make_product):
    p1 = make_product(stock=10)
    engine.add_item("u1", p1, 2)
    cart = engine.get_or_create_cart("u2")
    assert cart.items == []


def test_compute_totals_rounds_to_cents():
    from datetime import datetime, timezone

    from schemas import CartItem

    now = datetime.now(timezone.utc)
    items = [
        CartItem(product_id="a", product_name="A", quantity=3, price_at_time=0.1, added_at=now),
        CartItem(product_id="b", product_name="B", quantity=1, price_at_time=19.99, added_at=now),
    ]
    assert compute_totals(items) == (20.29, 4)
    assert compute_totals([]) == (0, 0)


def test_update_stock_error_names_absolute_quantity(engine, make_product):
    p1 = make_product(stock=5)
    engine.add_item("u1", p1, 4)
    with pytest.raises(InsufficientStock) as exc:
        engine.update_item("u1", p1, 6)
    assert exc.value.remaining == 5
    assert exc.value.message == "Insufficient stock. Only 5 item(s) available"


def test_product_with_null_stock_counts_as_out_of_stock(engine, make_product, db):
    p1 = make_product(stock=5)
    engine.add_item("u1", p1, 1)
    db["product"].update_one({"_id": ObjectId(p1)}, {"$set": {"stock": None}})

    with pytest.raises(InsufficientStock) as exc:
        engine.add_item("u1", p1, 1)
    assert exc.value.remaining == 0
    with pytest.raises(InsufficientStock):
        engine.update_item("u1", p1, 1)

    p2 = make_product(name="Lamp", stock=None)
    with pytest.raises(InsufficientStock):
        engine.add_item("u1", p2, 1)
