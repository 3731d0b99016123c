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

from app.core import config
from app.core.database.engine import AsyncSessionLocal, init_db
from app.core.errors import AuthzError
from app.features.bootstrap.datasets import SeedDatasets
from app.features.bootstrap.seeder import BootstrapSeeder
from app.features.credentials.routes import router as credential_router
from app.features.permissions.registry import get_registry
from app.features.permissions.routes import router as permission_router
from app.features.users.routes import router as user_router
from app.features.users.dependencies import get_authorization_header
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Pulpit Authz",
    description="Role and permission authorization service",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
limiter = Limiter(key_func=get_authorization_header)
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


@app.exception_handler(AuthzError)
async def authz_exception_handler(_request: Request, exc: AuthzError):
    return JSONResponse(status_code=exc.code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


@app.on_event("startup")
async def startup():
    """Initialize database and seed baseline roles, permissions and users."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")

    if config.SEED_ON_STARTUP:
        seeder = BootstrapSeeder(AsyncSessionLocal, get_registry(), SeedDatasets.from_directory())
        report = await seeder.run()
        if report.failed:
            log.error("Bootstrap seeding finished with failed stages; the server keeps running")


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "Pulpit Authz API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "Protected endpoints require Bearer token in Authorization header",
            "protected_endpoints": ["/users/me", "/permissions/*", "/credentials", "/credentials/{id}/revoke"],
            "public_endpoints": ["/credentials/verify", "/credentials/refresh"]
        },
        "features": {
            "permissions": "Role-based access control with a per-user-type permission catalog",
            "users": "Users with a role and effective permissions",
            "credentials": "Scoped API keys with expiry, refresh and revocation",
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(user_router, prefix="/users", tags=["users"])

# Permission routes (RBAC)
app.include_router(permission_router, prefix="/permissions", tags=["permissions"])

# API credential routes
app.include_router(credential_router, prefix="/credentials", tags=["credentials"])
