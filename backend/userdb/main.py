# userdb/main.py

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from userdb.api import users, plugins
from userdb.core.circuit_breaker import limiter
from userdb.core.store import UserDB
from userdb.infra.postgres import ENCRYPTION_KEY_PATH, get_database_url
from userdb.plugins.registry import Plugin, PluginID
from userdb.utils.logger import setup_logger

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # A database handed to create_app() belongs to the caller
    owned = getattr(app.state, "userdb", None) is None
    if owned:
        app.state.userdb = UserDB.connect(get_database_url(), ENCRYPTION_KEY_PATH)
        app.state.userdb.register_plugin(Plugin(id=PluginID.CMS.value))
    try:
        yield
    finally:
        if owned:
            app.state.userdb.close()


def create_app(userdb: UserDB | None = None) -> FastAPI:
    app = FastAPI(
        title="User Database",
        version="1.0.0",
        description="Encrypted user identity store",
        lifespan=lifespan,
    )
    if userdb is not None:
        app.state.userdb = userdb

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Register routers
    app.include_router(users.router, tags=["Users"])
    app.include_router(plugins.router, tags=["Plugins"])

    @app.get("/health")
    def health_check():
        db = getattr(app.state, "userdb", None)
        if db is None or db.is_shutdown():
            return {"status": "down"}
        return {"status": "ok"}

    return app


setup_logger()

app = create_app()
