"""
Cart endpoints.

Every mutation requires a signed-in session; guests get a 401 asking them to
sign in.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from shopstate.api.deps import get_context, require_sign_in
from shopstate.api.schemas import CartItemRequest, QuantityUpdate
from shopstate.core.config import settings
from shopstate.core.limiter import limiter
from shopstate.state.context import StorefrontContext

router = APIRouter(prefix="/api/cart", tags=["Cart"])


def _cart_body(ctx: StorefrontContext) -> Dict[str, Any]:
    return ctx.cart.state.to_storage()


@router.get("")
@limiter.limit(settings.rate_limit_read_endpoints)
def get_cart(request: Request, ctx: StorefrontContext = Depends(get_context)):
    return _cart_body(ctx)


@router.post("/items", status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.rate_limit_write_endpoints)
def add_item(request: Request, body: CartItemRequest, ctx: StorefrontContext = Depends(get_context)):
    try:
        ctx.cart.add_to_cart(
            body.product,
            quantity=body.quantity,
            size=body.size,
            color=body.color,
            on_auth_required=require_sign_in,
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid product: {e.error_count()} validation errors",
        ) from e
    return _cart_body(ctx)


@router.patch("/items/{key}")
@limiter.limit(settings.rate_limit_write_endpoints)
def update_item(
    request: Request, key: str, body: QuantityUpdate, ctx: StorefrontContext = Depends(get_context)
):
    """Set a line's quantity; zero or less removes the line."""
    ctx.cart.update_quantity(key, body.quantity, on_auth_required=require_sign_in)
    return _cart_body(ctx)


@router.delete("/items/{key}")
@limiter.limit(settings.rate_limit_write_endpoints)
def remove_item(request: Request, key: str, ctx: StorefrontContext = Depends(get_context)):
    ctx.cart.remove_from_cart(key, on_auth_required=require_sign_in)
    return _cart_body(ctx)


@router.delete("")
@limiter.limit(settings.rate_limit_write_endpoints)
def clear_cart(request: Request, ctx: StorefrontContext = Depends(get_context)):
    if not ctx.is_authenticated:
        require_sign_in("change your cart")
    ctx.cart.clear_cart()
    return _cart_body(ctx)
