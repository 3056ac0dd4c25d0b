from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from tenant_rbac.core import config
from tenant_rbac.core.errors import AppError
from tenant_rbac.core.database.engine import init_db, AsyncSessionLocal
from tenant_rbac.features.permissions.routes import router as permission_router
from tenant_rbac.features.permissions.service import PermissionsService
from tenant_rbac.features.permissions.store import PermissionStore
from tenant_rbac.features.users.dependencies import get_authorization_header
from tenant_rbac.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Tenant RBAC",
    description="Multi-tenant permission evaluation and caching service",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
limiter = Limiter(key_func=get_authorization_header)
app.state.limiter = limiter


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.tenant_rbac.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    origins = [config.ALLOW_ORIGIN]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


def build_permissions_service() -> PermissionsService:
    """Service over the application database; cache settings come from config."""
    return PermissionsService(PermissionStore(AsyncSessionLocal))


@app.exception_handler(AppError)
async def app_error_handler(_request: Request, exc: AppError):
    if exc.http_status >= 500:
        log.error("Request failed with %s: %s", exc.code, exc.message)
    return JSONResponse(
        status_code=exc.http_status,
        content={"success": False, "code": exc.code, "message": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    errors = dict()
    for error in exc.errors():
        if "loc" not in error or "msg" not in error:
            continue
        key = error["loc"][-1]
        if key == "__root__":
            key = "root"
        errors[key] = error["msg"]
    log.info("Request validation error %s", errors)
    return JSONResponse(status_code=400, content=jsonable_encoder(errors))


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.on_event("startup")
async def startup():
    """Create tables and the permission service."""
    log.info("Initializing database...")
    await init_db()
    app.state.permissions_service = build_permissions_service()
    log.info("Database initialized successfully")


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Permission evaluation and cache management
app.include_router(permission_router, prefix="/permissions", tags=["permissions"])
