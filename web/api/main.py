"""FastAPI affiliation API - families, tournaments and registrations."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
from affiliation.errors import AffiliationError
from affiliation.models.base import init_db

from web.api.auth_routes import router as auth_router
from web.api.family_routes import router as family_router
from web.api.registration_routes import router as registration_router
from web.api.routes import router as tournament_router

logger = logging.getLogger("affiliation.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    app.state.sync_dispatcher = None
    if config.SYNC_TARGET_URL:
        from affiliation.worker import build_dispatcher

        app.state.sync_dispatcher = build_dispatcher()
        await app.state.sync_dispatcher.start()
    else:
        logger.info("SYNC_TARGET_URL not set; registration sync runs only in the standalone worker")
    yield
    if app.state.sync_dispatcher:
        await app.state.sync_dispatcher.stop()


app = FastAPI(title="Affiliation API", lifespan=lifespan)


@app.exception_handler(AffiliationError)
async def affiliation_error_handler(request: Request, exc: AffiliationError):
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(auth_router)
app.include_router(family_router)
app.include_router(tournament_router)
app.include_router(registration_router)


@app.get("/api/health")
async def health():
    return {"status": "ok"}
