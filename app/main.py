from fastapi import Depends, FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import AsyncSessionLocal, init_db
from app.core.errors import AccessControlError
from app.core.rate_limit import limiter
from app.features.modules.routes import router as module_router
from app.features.modules.service import ensure_catalog_modules
from app.features.permissions.catalog import CATALOG_VERSION, DEFINITIONS
from app.features.permissions.dependencies import enforce_route_permissions
from app.features.permissions.route_map import DEFAULT_ROUTE_MAP
from app.features.permissions.routes import router as permission_router
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="IPR Access Control",
    description="Role/permission authorization service for IPR and research workflows",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None,
    # Every request passes through the route permission map first
    dependencies=[Depends(enforce_route_permissions)],
)
app.state.limiter = limiter


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


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


@app.exception_handler(AccessControlError)
async def access_control_exception_handler(request: Request, exc: AccessControlError):
    log.info("%s %s -> %d %s", request.method, request.url.path, exc.status_code, type(exc).__name__)
    content = {"success": False, "message": exc.message}
    if exc.details:
        content["details"] = exc.details
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(content), headers=headers)


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"success": False, "message": "You are going too fast"}, status_code=429)


@app.on_event("startup")
async def startup():
    """Initialize database and module rows on application startup."""
    log.info("Initializing database...")
    await init_db()
    async with AsyncSessionLocal() as db:
        await ensure_catalog_modules(db)
    log.info(
        "Permission catalog v%s loaded: %d keys, %d protected routes",
        CATALOG_VERSION, len(DEFINITIONS), len(DEFAULT_ROUTE_MAP)
    )
    log.warning(
        "Routes without a permission rule are NOT denied by default; "
        "unmapped handlers must enforce their own checks"
    )


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "IPR Access Control API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "Protected endpoints require Bearer token in Authorization header",
            "protected_endpoints": ["/permissions/*", "/modules/*"],
            "public_endpoints": ["/", "/health"]
        },
        "features": {
            "permissions": "Catalog, role defaults, grants/revokes with audit trail",
            "modules": "Feature areas grouping permissions",
            "route_enforcement": "Method+path permission rules checked before every handler"
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Permission routes
app.include_router(permission_router, prefix="/permissions", tags=["permissions"])

# Module routes
app.include_router(module_router, prefix="/modules", tags=["modules"])
