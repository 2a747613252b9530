"""Wishlist: same shape as the cart without quantities or prices.

Membership is by product id; adding a product twice is a no-op.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from shopstate.state.auth import AuthContext, AuthState
from shopstate.state.cart import AuthRequiredCallback
from shopstate.state.keys import StorageKeys
from shopstate.storage.durable import DurableStore

logger = logging.getLogger(__name__)


class WishlistItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str = Field(alias="_id")
    name: Optional[str] = None
    price: Optional[Decimal] = None
    original_price: Optional[Decimal] = Field(None, alias="originalPrice")
    images: List[Any] = Field(default_factory=list)
    category: Optional[Any] = None
    total_stock: Optional[int] = Field(None, alias="totalStock")

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class WishlistState(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    items: Tuple[WishlistItem, ...] = ()
    total_items: int = Field(0, alias="totalItems")

    @property
    def is_empty(self) -> bool:
        return not self.items and self.total_items == 0

    def contains(self, product_id: Any) -> bool:
        return any(item.id == str(product_id) for item in self.items)

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


@dataclass(frozen=True)
class AddToWishlist:
    product: WishlistItem


@dataclass(frozen=True)
class RemoveFromWishlist:
    product_id: str


@dataclass(frozen=True)
class ClearWishlist:
    pass


@dataclass(frozen=True)
class LoadWishlist:
    snapshot: Optional[WishlistState]


WishlistAction = Union[AddToWishlist, RemoveFromWishlist, ClearWishlist, LoadWishlist]


def wishlist_reducer(state: WishlistState, action: WishlistAction) -> WishlistState:
    if isinstance(action, AddToWishlist):
        if state.contains(action.product.id):
            return state
        return WishlistState(items=state.items + (action.product,), total_items=state.total_items + 1)
    if isinstance(action, RemoveFromWishlist):
        product_id = str(action.product_id)
        if not state.contains(product_id):
            return state
        return WishlistState(
            items=tuple(item for item in state.items if item.id != product_id),
            total_items=state.total_items - 1,
        )
    if isinstance(action, ClearWishlist):
        return WishlistState()
    if isinstance(action, LoadWishlist):
        return action.snapshot if action.snapshot is not None else WishlistState()
    raise TypeError(f"Unknown wishlist action: {action!r}")


class WishlistStore:
    """The signed-in user's wishlist, persisted under ``wishlist:<user id>``."""

    def __init__(
        self,
        store: DurableStore,
        auth: AuthContext,
        on_auth_required: Optional[AuthRequiredCallback] = None,
    ):
        self.store = store
        self.auth = auth
        self.on_auth_required = on_auth_required
        self.state = WishlistState()
        self._user_id: Optional[str] = None
        self._unsubscribe = auth.subscribe(self._on_auth_change)
        self._on_auth_change(auth.state)

    def _storage_key(self, user_id: str) -> str:
        return StorageKeys.for_user(StorageKeys.WISHLIST, user_id)

    def dispatch(self, action: WishlistAction) -> WishlistState:
        self.state = wishlist_reducer(self.state, action)
        if self.auth.is_authenticated and self._user_id is not None:
            key = self._storage_key(self._user_id)
            if self.state.is_empty:
                self.store.clear(key)
            else:
                self.store.save(key, self.state.to_storage())
        return self.state

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
            self.state = wishlist_reducer(self.state, ClearWishlist())
            if previous is not None:
                self.store.clear(self._storage_key(previous))
            return

        self.state = WishlistState()
        self.reload()

    def reload(self) -> WishlistState:
        if self._user_id is None:
            return self.state

        snapshot = self.store.load(self._storage_key(self._user_id))
        saved: Optional[WishlistState] = None
        if snapshot is not None:
            try:
                saved = WishlistState.model_validate(snapshot)
            except ValidationError as e:
                logger.warning(f"Ignoring unreadable saved wishlist: {e.error_count()} validation errors")

        if saved is not None and not saved.is_empty:
            self.state = wishlist_reducer(self.state, LoadWishlist(saved))
        else:
            self.state = WishlistState()
        return self.state

    def add_to_wishlist(
        self,
        product: Union[WishlistItem, Dict[str, Any]],
        on_auth_required: Optional[AuthRequiredCallback] = None,
    ) -> bool:
        if not self._require_auth("add items to your wishlist", on_auth_required):
            return False
        if not isinstance(product, WishlistItem):
            product = WishlistItem.model_validate(product)
        self.dispatch(AddToWishlist(product))
        return True

    def remove_from_wishlist(self, product_id: Any, on_auth_required: Optional[AuthRequiredCallback] = None) -> bool:
        if not self._require_auth("change your wishlist", on_auth_required):
            return False
        self.dispatch(RemoveFromWishlist(str(product_id)))
        return True

    def clear_wishlist(self) -> bool:
        if not self.auth.is_authenticated:
            return False
        self.dispatch(ClearWishlist())
        return True

    @property
    def items(self) -> Tuple[WishlistItem, ...]:
        return self.state.items

    @property
    def total_items(self) -> int:
        return self.state.total_items

    def is_in_wishlist(self, product_id: Any) -> bool:
        return self.state.contains(product_id)

    def get_wishlist_items_count(self) -> int:
        return self.state.total_items

    def close(self) -> None:
        self._unsubscribe()
