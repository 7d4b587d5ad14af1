"""
FastAPI app
"""

from importlib.metadata import version

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.middleware.authentication import AuthenticationMiddleware
from structlog import get_logger

from familyhub.core.models import StatisticsResponse
from familyhub.service import groups as groups_service
from familyhub.service.errors import FamilyHubError

from .authentication import IdentityHeaderBackend, on_auth_error
from .dependencies import DATABASE_MANAGER, SETTINGS, DatabaseDependency
from .groups import group_app
from .leaders import leader_app

settings = SETTINGS()

STATUS_CODES = {
    "not_found": 404,
    "conflict": 409,
    "forbidden": 403,
    "allocation_exhausted": 503,
    "unavailable": 503,
}


async def lifespan(app: FastAPI):
    app.settings = settings

    if settings.create_tables:
        await DATABASE_MANAGER.create_all()

    yield

    await DATABASE_MANAGER.dispose()


async def family_hub_error_handler(
    request: Request, exc: FamilyHubError
) -> JSONResponse:
    log = get_logger()
    await log.ainfo(
        "api.error", kind=exc.kind, error=type(exc).__name__, path=request.url.path
    )

    return JSONResponse(
        status_code=STATUS_CODES.get(exc.kind, 500),
        content={"kind": exc.kind, "detail": exc.message},
    )


def add_exception_handlers(app: FastAPI) -> FastAPI:
    app.add_exception_handler(FamilyHubError, family_hub_error_handler)
    return app


app = FastAPI(
    lifespan=lifespan,
    title="FamilyHub API",
    summary="Provisioning of family groups: leaders, members and group lifecycle.",
    version=version("familyhub"),
)

app = add_exception_handlers(app)

app.add_middleware(
    AuthenticationMiddleware,
    backend=IdentityHeaderBackend(header_name=settings.identity_header),
    on_error=on_auth_error,
)

app.include_router(group_app, prefix="/groups")
app.include_router(leader_app, prefix="/leaders")


@app.get("/health", summary="Liveness check")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/stats", summary="Counts of groups and users")
async def statistics(conn: DatabaseDependency) -> StatisticsResponse:
    return await groups_service.get_statistics(conn=conn)
