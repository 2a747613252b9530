"""
Unit tests for the cart reducer and the authenticated cart store
"""

from decimal import Decimal

import pytest

from shopstate.state.auth import AuthContext
from shopstate.state.cart import (
    AddItem,
    CartState,
    CartStore,
    ClearCart,
    LoadCart,
    ProductSnapshot,
    RemoveItem,
    SetQuantity,
    cart_reducer,
    make_item_key,
)
from tests.utils.factories import ProductFactory
from tests.utils.helpers import stored_json

pytestmark = pytest.mark.unit


def product(product_id="p1", price="10.00", **kwargs) -> ProductSnapshot:
    return ProductSnapshot.model_validate(ProductFactory.create(product_id=product_id, price=price, **kwargs))


def assert_totals_consistent(state: CartState):
    assert state.total_items == sum(item.quantity for item in state.items)
    assert state.total_price == sum((item.price * item.quantity for item in state.items), Decimal("0"))


class TestCartReducer:
    """Pure state transitions"""

    def test_add_new_line(self):
        state = cart_reducer(CartState(), AddItem(product("p1", "10.00"), quantity=2, size="M"))

        assert len(state.items) == 1
        item = state.items[0]
        assert item.key == "p1-M-default"
        assert item.quantity == 2
        assert item.price == Decimal("10.00")
        assert state.total_items == 2
        assert state.total_price == Decimal("20.00")

    def test_add_same_variant_increments(self):
        state = cart_reducer(CartState(), AddItem(product("p1", "10.00"), quantity=1, size="M"))
        state = cart_reducer(state, AddItem(product("p1", "10.00"), quantity=3, size="M"))

        assert len(state.items) == 1
        assert state.items[0].quantity == 4
        assert state.total_items == 4
        assert state.total_price == Decimal("40.00")

    def test_variants_are_separate_lines(self):
        state = cart_reducer(CartState(), AddItem(product("p1"), size="M", color="red"))
        state = cart_reducer(state, AddItem(product("p1"), size="L", color="red"))

        assert [item.key for item in state.items] == ["p1-M-red", "p1-L-red"]
        assert_totals_consistent(state)

    def test_existing_line_keeps_its_price(self):
        state = cart_reducer(CartState(), AddItem(product("p1", "10.00")))
        state = cart_reducer(state, AddItem(product("p1", "12.00")))

        assert state.items[0].price == Decimal("10.00")
        assert state.total_price == Decimal("20.00")
        assert_totals_consistent(state)

    def test_add_non_positive_quantity_is_noop(self):
        state = CartState()

        assert cart_reducer(state, AddItem(product(), quantity=0)) is state

    def test_remove_line(self):
        state = cart_reducer(CartState(), AddItem(product("p1", "10.00"), quantity=2))
        state = cart_reducer(state, AddItem(product("p2", "5.50")))

        state = cart_reducer(state, RemoveItem("p1-default-default"))

        assert [item.key for item in state.items] == ["p2-default-default"]
        assert state.total_items == 1
        assert state.total_price == Decimal("5.50")

    def test_remove_absent_key_is_noop(self):
        state = cart_reducer(CartState(), AddItem(product()))

        assert cart_reducer(state, RemoveItem("nope")) is state

    def test_set_quantity_adjusts_by_delta(self):
        state = cart_reducer(CartState(), AddItem(product("p1", "2.50"), quantity=2))

        state = cart_reducer(state, SetQuantity("p1-default-default", 5))

        assert state.items[0].quantity == 5
        assert state.total_items == 5
        assert state.total_price == Decimal("12.50")

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_set_non_positive_quantity_removes(self, quantity):
        state = cart_reducer(CartState(), AddItem(product("p1")))

        state = cart_reducer(state, SetQuantity("p1-default-default", quantity))

        assert state.is_empty
        assert state.total_price == Decimal("0")

    @pytest.mark.parametrize("quantity", [0, -1, -10])
    def test_non_positive_quantity_matches_remove_in_multi_line_cart(self, quantity):
        state = CartState()
        for action in [
            AddItem(product("p1", "4.00"), quantity=2),
            AddItem(product("p2", "7.25"), quantity=1, size="M"),
            AddItem(product("p3", "1.10"), quantity=3, color="red"),
        ]:
            state = cart_reducer(state, action)

        via_quantity = cart_reducer(state, SetQuantity("p2-M-default", quantity))
        via_remove = cart_reducer(state, RemoveItem("p2-M-default"))

        assert via_quantity == via_remove
        assert [item.key for item in via_quantity.items] == ["p1-default-default", "p3-default-red"]
        assert via_quantity.total_items == 5
        assert via_quantity.total_price == Decimal("11.30")

    def test_set_quantity_absent_key_is_noop(self):
        state = CartState()

        assert cart_reducer(state, SetQuantity("nope", 3)) is state

    def test_clear_and_load(self):
        loaded = cart_reducer(CartState(), AddItem(product()))

        assert cart_reducer(loaded, ClearCart()) == CartState()
        assert cart_reducer(CartState(), LoadCart(loaded)) == loaded
        assert cart_reducer(loaded, LoadCart(None)) == CartState()

    def test_unknown_action(self):
        with pytest.raises(TypeError):
            cart_reducer(CartState(), object())

    def test_totals_stay_consistent_through_a_session(self):
        state = CartState()
        for action in [
            AddItem(product("p1", "19.99"), quantity=2, size="S"),
            AddItem(product("p2", "5.00"), quantity=1),
            AddItem(product("p1", "19.99"), quantity=1, size="S"),
            SetQuantity("p2-default-default", 4),
            RemoveItem("missing"),
            SetQuantity("p1-S-default", 1),
        ]:
            state = cart_reducer(state, action)
            assert_totals_consistent(state)

        assert state.total_items == 5
        assert state.total_price == Decimal("39.99")

    @pytest.mark.parametrize(
        "actions",
        [
            [AddItem(product("p1", "0.10"), quantity=3), AddItem(product("p2", "0.20"), quantity=7)],
            [
                AddItem(product("p1", "3.33"), quantity=1, size="S"),
                AddItem(product("p1", "3.33"), quantity=1, size="L"),
                SetQuantity("p1-S-default", 9),
                RemoveItem("p1-L-default"),
            ],
            [
                AddItem(product("p1", "12.00"), quantity=2),
                ClearCart(),
                AddItem(product("p2", "0.99"), quantity=4, color="blue"),
                SetQuantity("p2-default-blue", -2),
                AddItem(product("p3", "100.01")),
            ],
            [
                AddItem(product("p1", "5.55"), quantity=2),
                AddItem(product("p2", "8.80"), quantity=1),
                AddItem(product("p1", "5.55"), quantity=5),
                SetQuantity("missing", 3),
                SetQuantity("p2-default-default", 0),
                AddItem(product("p2", "8.80"), quantity=2),
            ],
        ],
        ids=["adds", "variants", "clear-and-refill", "mixed"],
    )
    def test_totals_match_lines_after_every_action(self, actions):
        state = CartState()
        for action in actions:
            state = cart_reducer(state, action)
            assert_totals_consistent(state)

    def test_serialized_with_camel_case_field_names(self):
        state = cart_reducer(CartState(), AddItem(product("p1", "10.00")))

        stored = state.to_storage()

        assert stored["totalItems"] == 1
        assert stored["totalPrice"] == "10.00"
        assert stored["items"][0]["product"]["_id"] == "p1"
        assert CartState.model_validate(stored) == state

    def test_make_item_key(self):
        assert make_item_key("p1") == "p1-default-default"
        assert make_item_key("p1", "M", "blue") == "p1-M-blue"


class TestCartStore:
    """Gating, persistence and auth transitions"""

    def test_guest_add_requires_sign_in(self, durable_store, memory_storage):
        prompts = []
        cart = CartStore(durable_store, AuthContext(), on_auth_required=prompts.append)

        assert cart.add_to_cart(ProductFactory.create(product_id="p1")) is False

        assert prompts == ["add items to your cart"]
        assert cart.state.is_empty
        assert memory_storage.keys() == []

    def test_per_call_callback_wins(self, durable_store):
        default_prompts, call_prompts = [], []
        cart = CartStore(durable_store, AuthContext(), on_auth_required=default_prompts.append)

        cart.update_quantity("p1-default-default", 2, on_auth_required=call_prompts.append)

        assert default_prompts == []
        assert call_prompts == ["change your cart"]

    def test_signed_in_cart_is_persisted_per_user(self, signed_in_storefront, memory_storage):
        cart = signed_in_storefront.cart

        assert cart.add_to_cart(ProductFactory.create(product_id="p1", price="10.00"), quantity=2) is True

        stored = stored_json(memory_storage, "cart:u1")
        assert stored["totalItems"] == 2
        assert stored["totalPrice"] == "20.00"
        assert memory_storage.get_item("cart") is None

    def test_cart_that_becomes_empty_removes_persisted_copy(self, signed_in_storefront, memory_storage):
        cart = signed_in_storefront.cart
        cart.add_to_cart(ProductFactory.create(product_id="p1"))

        cart.remove_from_cart("p1-default-default")

        assert memory_storage.get_item("cart:u1") is None
        assert memory_storage.get_item("cart:u1_backup") is None

    def test_clear_cart(self, signed_in_storefront, memory_storage):
        cart = signed_in_storefront.cart
        cart.add_to_cart(ProductFactory.create(product_id="p1"))

        cart.clear_cart()

        assert cart.state.is_empty
        assert memory_storage.get_item("cart:u1") is None

    def test_logout_clears_memory_and_storage(self, signed_in_storefront, memory_storage):
        signed_in_storefront.cart.add_to_cart(ProductFactory.create(product_id="p1"))

        signed_in_storefront.logout()

        assert signed_in_storefront.cart.state.is_empty
        assert memory_storage.get_item("cart:u1") is None

    def test_sign_in_restores_saved_cart(self, storefront, credentials, durable_store):
        saved = cart_reducer(CartState(), AddItem(product("p9", "7.00"), quantity=3))
        durable_store.save("cart:u1", saved.to_storage())

        storefront.login(credentials)

        assert storefront.cart.total_items == 3
        assert storefront.cart.get_item_quantity("p9") == 3
        assert storefront.cart.get_cart_total() == Decimal("21.00")

    def test_unreadable_saved_cart_is_ignored(self, storefront, credentials, durable_store):
        durable_store.save("cart:u1", {"items": "not-a-list"})

        storefront.login(credentials)

        assert storefront.cart.state.is_empty

    def test_queries(self, signed_in_storefront):
        cart = signed_in_storefront.cart
        cart.add_to_cart(ProductFactory.create(product_id="p1", price="3.00"), quantity=2, size="M", color="red")

        assert cart.is_in_cart("p1", "M", "red") is True
        assert cart.is_in_cart("p1") is False
        assert cart.get_item_quantity("p1", "M", "red") == 2
        assert cart.get_cart_items_count() == 2
        assert cart.total_price == Decimal("6.00")
        assert len(cart.items) == 1
