"""Request and response models for the storefront state API."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from shopstate.state.context import StorefrontContext


class LoginRequest(BaseModel):
    """Credentials forwarded to the auth service."""

    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=1)
    remember: bool = Field(False, description="Remember the e-mail address on this browser")

    model_config = {
        "json_schema_extra": {
            "example": {"email": "jane@example.com", "password": "secret", "remember": True}
        }
    }


class RegisterRequest(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3, max_length=254)
    password: str = Field(..., min_length=6)


class SessionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    authenticated: bool
    user: Optional[Dict[str, Any]] = None
    session_id: Optional[str] = Field(None, alias="sessionId")
    login_expiry: Optional[int] = Field(None, alias="loginExpiry")
    remembered_email: Optional[str] = Field(None, alias="rememberedEmail")

    @classmethod
    def from_context(cls, ctx: StorefrontContext) -> "SessionResponse":
        state = ctx.state
        user = dict(state.user) if state.user else None
        if user is not None:
            # The bearer token stays server side
            user.pop("token", None)
        return cls(
            authenticated=state.is_authenticated,
            user=user,
            session_id=state.session_id,
            login_expiry=state.expiry,
            remembered_email=ctx.remembered_email,
        )


class CartItemRequest(BaseModel):
    product: Dict[str, Any] = Field(..., description="Product snapshot; must carry _id and price")
    quantity: int = Field(1, ge=1)
    size: Optional[str] = None
    color: Optional[str] = None


class QuantityUpdate(BaseModel):
    quantity: int = Field(..., description="New quantity; zero or less removes the line")


class WishlistItemRequest(BaseModel):
    product: Dict[str, Any]


class SearchTermRequest(BaseModel):
    term: str = Field(..., min_length=1, max_length=200)


class ViewedProductRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_id: str = Field(..., alias="productId", min_length=1)


class HistoryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    search_history: List[str] = Field(default_factory=list, alias="searchHistory")
    viewed_products: List[str] = Field(default_factory=list, alias="viewedProducts")
