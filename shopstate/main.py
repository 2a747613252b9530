import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.orm import sessionmaker
from starlette.middleware.sessions import SessionMiddleware

from shopstate.api import browsing, cart, health, session, wishlist
from shopstate.api.deps import ContextRegistry
from shopstate.core.config import settings
from shopstate.core.limiter import limiter
from shopstate.core.logging_config import init_application_logging
from shopstate.core.utils.clock import Clock, now_ms
from shopstate.db.init_db import init_database
from shopstate.state.debug import debug_enabled

logger = logging.getLogger("shopstate.main")


def create_app(session_factory: Optional[sessionmaker] = None, clock: Clock = now_ms) -> FastAPI:
    """Build the application.

    Args:
        session_factory: SQLAlchemy sessions for profile storage; the
            configured database when omitted
        clock: Millisecond clock handed to every storefront context
    """
    if session_factory is None:
        from shopstate.db.session import SessionLocal
        session_factory = SessionLocal

    bind = session_factory.kw.get("bind")
    if bind is not None:
        init_database(bind)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        init_application_logging()
        stop_liveness = asyncio.Event()
        liveness = asyncio.create_task(app.state.contexts.run_liveness_checks(stop_event=stop_liveness))
        yield
        stop_liveness.set()
        await liveness
        app.state.contexts.close()

    app = FastAPI(
        title=settings.APP_NAME,
        description="Persisted storefront session, cart and wishlist state",
        version=settings.VERSION,
        lifespan=lifespan,
    )

    app.state.session_factory = session_factory
    app.state.contexts = ContextRegistry(session_factory=session_factory, clock=clock)

    # Attach limiter to app.state before any @limiter.limit() route is hit
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    logger.info(
        "Rate limiting initialized with configuration: auth=%s, write=%s, read=%s",
        settings.rate_limit_auth_endpoints,
        settings.rate_limit_write_endpoints,
        settings.rate_limit_read_endpoints,
    )

    # Session cookie holds only the browser profile id
    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.SECRET_KEY,
        session_cookie="shopstate-profile",
        max_age=settings.SESSION_COOKIE_MAX_AGE,
        https_only=settings.ENVIRONMENT == "production",
        same_site="lax",
    )

    # Credentials require explicit origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health.router)
    app.include_router(session.router)
    app.include_router(cart.router)
    app.include_router(wishlist.router)
    app.include_router(browsing.router)

    if debug_enabled():
        from shopstate.api import debug

        app.include_router(debug.router)
        logger.warning("Debug endpoints enabled")

    return app


app = create_app()
