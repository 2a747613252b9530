"""
Developer debug endpoints.

Registered only when the DEBUG_MODE_ENABLED feature flag is on at startup.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, status

from shopstate.api.deps import get_context
from shopstate.core.feature_flags import feature_flags
from shopstate.state.context import StorefrontContext
from shopstate.state.debug import DebugToolingDisabled, session_debug_report

router = APIRouter(prefix="/api/debug", tags=["Debug"])


@router.get("/session")
def debug_session(ctx: StorefrontContext = Depends(get_context)) -> Dict[str, Any]:
    """Session, cart and storage snapshot for this browser profile."""
    try:
        return session_debug_report(ctx)
    except DebugToolingDisabled as e:
        # Flag switched off at runtime after the router was registered
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e


@router.get("/feature-flags")
def debug_feature_flags() -> Dict[str, bool]:
    return feature_flags.get_all_flags()
