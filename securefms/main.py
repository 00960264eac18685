# securefms/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from securefms import admin, auth, files, models, password_reset
from securefms.database import SessionLocal, engine
from securefms.deps import get_blob_backend, reaper
from securefms.errors import CodeMismatch, RateLimitError, SecureFMSError
from securefms.seed import bootstrap_superadmin, seed_roles

logger = logging.getLogger(__name__)

models.Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    with SessionLocal() as db:
        seed_roles(db)
        bootstrap_superadmin(db)
    reaper.start()
    try:
        yield
    finally:
        reaper.stop()


app = FastAPI(title="Secure FMS", lifespan=lifespan)

DEV_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=DEV_ORIGINS,
    allow_credentials=True,        # keeps Authorization header
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth.router)
app.include_router(password_reset.router)
app.include_router(files.router)
app.include_router(admin.router)


@app.exception_handler(SecureFMSError)
async def securefms_error_handler(request: Request, exc: SecureFMSError):
    if exc.opaque:
        # full detail stays in the server log, the caller gets `exc.detail` only
        logger.error(
            "%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc,
            exc_info=exc)
    else:
        logger.info("%s on %s %s", type(exc).__name__, request.method, request.url.path)

    content = {"detail": exc.detail}
    headers = {}
    if isinstance(exc, CodeMismatch):
        content["attempts_remaining"] = exc.attempts_remaining
    if isinstance(exc, RateLimitError):
        content["retry_after"] = exc.retry_after
        headers["Retry-After"] = str(exc.retry_after)
    if exc.status_code == 401:
        headers["WWW-Authenticate"] = "Bearer"
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers or None)


def _ping_database() -> None:
    with SessionLocal() as db:
        db.execute(text("SELECT 1"))


HEALTH_PROBES = {
    "database": _ping_database,
    "storage": lambda: get_blob_backend().ping(),
}


@app.get("/healthz")
def health_check():
    """200 when the database and blob storage answer, 503 otherwise."""
    checks = {}
    for name, probe in HEALTH_PROBES.items():
        try:
            probe()
            checks[name] = "ok"
        except Exception as exc:
            logger.error("Health check: %s unavailable: %s", name, exc)
            checks[name] = "failed"

    healthy = all(state == "ok" for state in checks.values())
    status = {"status": "healthy" if healthy else "unhealthy", "checks": checks}
    if not healthy:
        raise HTTPException(status_code=503, detail=status)
    return status
