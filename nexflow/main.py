from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from nexflow.core.errors import NexflowError, TenantViolationError
from nexflow.core.logging import configure_logging
from nexflow import models  # noqa: F401
from nexflow.routers.auth import router as auth_router
from nexflow.routers.automations import router as automations_router
from nexflow.routers.cards import router as cards_router
from nexflow.routers.commissions import router as commissions_router
from nexflow.routers.contact_automations import router as contact_automations_router
from nexflow.routers.contacts import router as contacts_router
from nexflow.routers.flows import router as flows_router
from nexflow.routers.steps import router as steps_router
from nexflow.routers.tags import router as tags_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    yield


app = FastAPI(
    title="Nexflow",
    lifespan=lifespan,
)


@app.exception_handler(NexflowError)
async def handle_domain_error(request: Request, exc: NexflowError):
    if isinstance(exc, TenantViolationError):
        logger.warning(
            "Tenant violation",
            extra={"path": request.url.path, "client_id": getattr(request.state, "client_id", None)},
        )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "error": exc.code})


@app.middleware("http")
async def catch_unhandled_exceptions(request: Request, call_next):
    try:
        return await call_next(request)
    except Exception:
        logger.exception("Unhandled exception")
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


app.include_router(auth_router)
app.include_router(flows_router)
app.include_router(steps_router)
app.include_router(cards_router)
app.include_router(automations_router)
app.include_router(contacts_router)
app.include_router(contact_automations_router)
app.include_router(tags_router)
app.include_router(commissions_router)


@app.get("/")
def root():
    return {"status": "Nexflow running"}


@app.get("/health")
def health():
    return {
        "status": "ok",
        "version": "1.0.0",
    }
