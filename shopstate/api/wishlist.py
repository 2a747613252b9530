"""Wishlist endpoints; mutations require a signed-in session."""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError

from shopstate.api.deps import get_context, require_sign_in
from shopstate.api.schemas import WishlistItemRequest
from shopstate.core.config import settings
from shopstate.core.limiter import limiter
from shopstate.state.context import StorefrontContext

router = APIRouter(prefix="/api/wishlist", tags=["Wishlist"])


@router.get("")
@limiter.limit(settings.rate_limit_read_endpoints)
def get_wishlist(request: Request, ctx: StorefrontContext = Depends(get_context)):
    return ctx.wishlist.state.to_storage()


@router.post("/items", status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.rate_limit_write_endpoints)
def add_item(request: Request, body: WishlistItemRequest, ctx: StorefrontContext = Depends(get_context)):
    try:
        ctx.wishlist.add_to_wishlist(body.product, on_auth_required=require_sign_in)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid product: {e.error_count()} validation errors",
        ) from e
    return ctx.wishlist.state.to_storage()


@router.delete("/items/{product_id}")
@limiter.limit(settings.rate_limit_write_endpoints)
def remove_item(request: Request, product_id: str, ctx: StorefrontContext = Depends(get_context)):
    ctx.wishlist.remove_from_wishlist(product_id, on_auth_required=require_sign_in)
    return ctx.wishlist.state.to_storage()


@router.delete("")
@limiter.limit(settings.rate_limit_write_endpoints)
def clear_wishlist(request: Request, ctx: StorefrontContext = Depends(get_context)):
    if not ctx.wishlist.clear_wishlist():
        require_sign_in("change your wishlist")
    return ctx.wishlist.state.to_storage()
