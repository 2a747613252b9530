"""Shopping cart: a pure reducer plus a store that gates and persists it.

Line items are keyed by ``<productId>-<size>-<color>`` with ``default``
standing in for a missing size or color, so adding the same variant again
raises its quantity instead of adding a line. ``total_items`` and
``total_price`` are updated incrementally by every transition.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from shopstate.state.auth import AuthContext, AuthState
from shopstate.state.keys import StorageKeys
from shopstate.storage.durable import DurableStore

logger = logging.getLogger(__name__)

AuthRequiredCallback = Callable[[str], None]


class ProductSnapshot(BaseModel):
    """Copy of the product taken when it was added; never refreshed."""

    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    id: str = Field(alias="_id")
    name: Optional[str] = None
    price: Decimal

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class CartItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    key: str
    product: ProductSnapshot
    quantity: int = Field(ge=1)
    price: Decimal
    size: Optional[str] = None
    color: Optional[str] = None

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity


class CartState(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    items: Tuple[CartItem, ...] = ()
    total_items: int = Field(0, alias="totalItems")
    total_price: Decimal = Field(Decimal("0"), alias="totalPrice")

    @property
    def is_empty(self) -> bool:
        return not self.items and self.total_items == 0

    def find(self, key: str) -> Optional[CartItem]:
        return next((item for item in self.items if item.key == key), None)

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def make_item_key(product_id: Any, size: Optional[str] = None, color: Optional[str] = None) -> str:
    return f"{product_id}-{size or 'default'}-{color or 'default'}"


@dataclass(frozen=True)
class AddItem:
    product: ProductSnapshot
    quantity: int = 1
    size: Optional[str] = None
    color: Optional[str] = None


@dataclass(frozen=True)
class RemoveItem:
    key: str


@dataclass(frozen=True)
class SetQuantity:
    key: str
    quantity: int


@dataclass(frozen=True)
class ClearCart:
    pass


@dataclass(frozen=True)
class LoadCart:
    snapshot: Optional[CartState]


CartAction = Union[AddItem, RemoveItem, SetQuantity, ClearCart, LoadCart]


def _add(state: CartState, action: AddItem) -> CartState:
    if action.quantity < 1:
        return state

    key = make_item_key(action.product.id, action.size, action.color)
    existing = state.find(key)
    if existing is not None:
        # Existing lines keep the unit price captured when first added
        items = tuple(
            item.model_copy(update={"quantity": item.quantity + action.quantity}) if item.key == key else item
            for item in state.items
        )
        price = existing.price
    else:
        price = action.product.price
        items = state.items + (
            CartItem(
                key=key,
                product=action.product,
                quantity=action.quantity,
                price=price,
                size=action.size,
                color=action.color,
            ),
        )

    return CartState(
        items=items,
        total_items=state.total_items + action.quantity,
        total_price=state.total_price + price * action.quantity,
    )


def _remove(state: CartState, key: str) -> CartState:
    item = state.find(key)
    if item is None:
        return state
    return CartState(
        items=tuple(line for line in state.items if line.key != key),
        total_items=state.total_items - item.quantity,
        total_price=state.total_price - item.subtotal,
    )


def _set_quantity(state: CartState, action: SetQuantity) -> CartState:
    if action.quantity <= 0:
        return _remove(state, action.key)

    item = state.find(action.key)
    if item is None:
        return state

    delta = action.quantity - item.quantity
    return CartState(
        items=tuple(
            line.model_copy(update={"quantity": action.quantity}) if line.key == action.key else line
            for line in state.items
        ),
        total_items=state.total_items + delta,
        total_price=state.total_price + item.price * delta,
    )


def cart_reducer(state: CartState, action: CartAction) -> CartState:
    if isinstance(action, AddItem):
        return _add(state, action)
    if isinstance(action, RemoveItem):
        return _remove(state, action.key)
    if isinstance(action, SetQuantity):
        return _set_quantity(state, action)
    if isinstance(action, ClearCart):
        return CartState()
    if isinstance(action, LoadCart):
        return action.snapshot if action.snapshot is not None else CartState()
    raise TypeError(f"Unknown cart action: {action!r}")


class CartStore:
    """The cart of the signed-in user, persisted under ``cart:<user id>``.

    Guests may browse but not fill a cart: add, remove and quantity changes
    while signed out call the auth-required callback and return False.
    """

    def __init__(
        self,
        store: DurableStore,
        auth: AuthContext,
        on_auth_required: Optional[AuthRequiredCallback] = None,
    ):
        self.store = store
        self.auth = auth
        self.on_auth_required = on_auth_required
        self.state = CartState()
        self._user_id: Optional[str] = None
        self._unsubscribe = auth.subscribe(self._on_auth_change)
        self._on_auth_change(auth.state)

    def _storage_key(self, user_id: str) -> str:
        return StorageKeys.for_user(StorageKeys.CART, user_id)

    def dispatch(self, action: CartAction) -> CartState:
        self.state = cart_reducer(self.state, action)
        self._persist()
        return self.state

    def _persist(self) -> None:
        if not self.auth.is_authenticated or self._user_id is None:
            return
        key = self._storage_key(self._user_id)
        if self.state.is_empty:
            self.store.clear(key)
        else:
            self.store.save(key, self.state.to_storage())

    def _require_auth(self, action: str, on_auth_required: Optional[AuthRequiredCallback]) -> bool:
        if self.auth.is_authenticated:
            return True
        logger.info(f"Sign-in required to {action}")
        callback = on_auth_required or self.on_auth_required
        if callback is not None:
            callback(action)
        return False

    def _on_auth_change(self, auth_state: AuthState) -> None:
        user_id = auth_state.user_id if auth_state.is_authenticated else None
        if user_id == self._user_id:
            return

        previous, self._user_id = self._user_id, user_id
        if user_id is None:
            self.state = cart_reducer(self.state, ClearCart())
            if previous is not None:
                self.store.clear(self._storage_key(previous))
            return

        self.state = CartState()
        self.reload()

    def reload(self) -> CartState:
        """Replace the in-memory cart with the signed-in user's persisted one."""
        if self._user_id is None:
            return self.state

        snapshot = self.store.load(self._storage_key(self._user_id))
        saved: Optional[CartState] = None
        if snapshot is not None:
            try:
                saved = CartState.model_validate(snapshot)
            except ValidationError as e:
                logger.warning(f"Ignoring unreadable saved cart: {e.error_count()} validation errors")

        if saved is not None and not saved.is_empty:
            self.state = cart_reducer(self.state, LoadCart(saved))
            logger.debug(f"Cart loaded with {saved.total_items} items")
        else:
            self.state = CartState()
        return self.state

    def add_to_cart(
        self,
        product: Union[ProductSnapshot, Dict[str, Any]],
        quantity: int = 1,
        size: Optional[str] = None,
        color: Optional[str] = None,
        on_auth_required: Optional[AuthRequiredCallback] = None,
    ) -> bool:
        if not self._require_auth("add items to your cart", on_auth_required):
            return False
        if not isinstance(product, ProductSnapshot):
            product = ProductSnapshot.model_validate(product)
        self.dispatch(AddItem(product=product, quantity=quantity, size=size, color=color))
        return True

    def remove_from_cart(self, key: str, on_auth_required: Optional[AuthRequiredCallback] = None) -> bool:
        if not self._require_auth("change your cart", on_auth_required):
            return False
        self.dispatch(RemoveItem(key))
        return True

    def update_quantity(
        self, key: str, quantity: int, on_auth_required: Optional[AuthRequiredCallback] = None
    ) -> bool:
        if not self._require_auth("change your cart", on_auth_required):
            return False
        self.dispatch(SetQuantity(key, quantity))
        return True

    def clear_cart(self) -> None:
        # An empty cart removes the persisted copy in _persist
        self.dispatch(ClearCart())

    @property
    def items(self) -> Tuple[CartItem, ...]:
        return self.state.items

    @property
    def total_items(self) -> int:
        return self.state.total_items

    @property
    def total_price(self) -> Decimal:
        return self.state.total_price

    def get_item_quantity(self, product_id: Any, size: Optional[str] = None, color: Optional[str] = None) -> int:
        item = self.state.find(make_item_key(product_id, size, color))
        return item.quantity if item else 0

    def is_in_cart(self, product_id: Any, size: Optional[str] = None, color: Optional[str] = None) -> bool:
        return self.get_item_quantity(product_id, size, color) > 0

    def get_cart_total(self) -> Decimal:
        return self.state.total_price

    def get_cart_items_count(self) -> int:
        return self.state.total_items

    def close(self) -> None:
        self._unsubscribe()
