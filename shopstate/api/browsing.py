"""Preferences, search history and recently viewed products.

Open to guests as well; guest data lives under the ``guest`` namespace of the
browser profile.
"""

from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status

from shopstate.api.deps import get_context
from shopstate.api.schemas import HistoryResponse, SearchTermRequest, ViewedProductRequest
from shopstate.core.config import settings
from shopstate.core.limiter import limiter
from shopstate.state.context import StorefrontContext

router = APIRouter(prefix="/api", tags=["Browsing"])


def _history(ctx: StorefrontContext) -> HistoryResponse:
    return HistoryResponse(
        search_history=ctx.browsing.load_search_history(),
        viewed_products=ctx.browsing.load_viewed_products(),
    )


@router.get("/preferences")
@limiter.limit(settings.rate_limit_read_endpoints)
def get_preferences(request: Request, ctx: StorefrontContext = Depends(get_context)) -> Dict[str, Any]:
    return ctx.browsing.load_preferences()


@router.put("/preferences")
@limiter.limit(settings.rate_limit_write_endpoints)
def put_preferences(
    request: Request,
    preferences: Dict[str, Any] = Body(...),
    ctx: StorefrontContext = Depends(get_context),
) -> Dict[str, Any]:
    if not ctx.browsing.save_preferences(preferences):
        raise HTTPException(status_code=status.HTTP_507_INSUFFICIENT_STORAGE, detail="Could not save preferences")
    return ctx.browsing.load_preferences()


@router.post("/history/search", response_model=HistoryResponse)
@limiter.limit(settings.rate_limit_write_endpoints)
def record_search(request: Request, body: SearchTermRequest, ctx: StorefrontContext = Depends(get_context)):
    if not body.term.strip():
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Search term is empty")
    ctx.browsing.save_search_history(body.term)
    return _history(ctx)


@router.post("/history/viewed", response_model=HistoryResponse)
@limiter.limit(settings.rate_limit_write_endpoints)
def record_viewed(request: Request, body: ViewedProductRequest, ctx: StorefrontContext = Depends(get_context)):
    ctx.browsing.save_viewed_product(body.product_id)
    return _history(ctx)


@router.get("/history", response_model=HistoryResponse)
@limiter.limit(settings.rate_limit_read_endpoints)
def get_history(request: Request, ctx: StorefrontContext = Depends(get_context)):
    return _history(ctx)
