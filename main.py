"""
Main FastAPI application with all endpoints.
"""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional, Sequence

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, settings as default_settings
from database import Database, get_db
from errors import CountryApiError, CountryNotFoundError, SchemaMigrationError
from image_generator import get_image_path, summary_image_hook
from migrations import run_migrations
from models import (
    CountryResponse,
    ErrorResponse,
    MessageResponse,
    RefreshResponse,
    StatusResponse,
    ValidationErrorResponse,
)
from services import (
    MultiplierSource,
    PostCommitHook,
    delete_country_by_name,
    get_all_countries,
    get_country_by_name,
    get_database_status,
    random_multiplier,
    refresh_countries,
    validate_name,
)

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"

router = APIRouter()

NAME_ERRORS = {
    400: {"model": ValidationErrorResponse},
    404: {"model": ErrorResponse},
}


# ============= Endpoints =============
# Specific routes must come before /countries/{name}

@router.get("/")
async def root(request: Request):
    """Root endpoint with API information."""
    settings = request.app.state.settings
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "endpoints": {
            "POST /countries/refresh": "Fetch and cache country data",
            "GET /countries": "Get all countries (supports filters and sorting)",
            "GET /countries/image": "Get summary image",
            "GET /countries/{name}": "Get specific country by name",
            "DELETE /countries/{name}": "Delete a country",
            "GET /status": "Get total countries and last refresh timestamp",
            "/docs": "Interactive API documentation"
        }
    }


@router.get("/status", response_model=StatusResponse)
async def get_status(db: Session = Depends(get_db)):
    """Get total number of countries and last refresh timestamp."""
    total, last_refresh = get_database_status(db)
    return StatusResponse(total_countries=total, last_refreshed_at=last_refresh)


@router.post(
    "/countries/refresh",
    response_model=RefreshResponse,
    status_code=status.HTTP_200_OK,
    responses={500: {"model": ErrorResponse}, 503: {"model": ErrorResponse}}
)
async def refresh(request: Request, db: Session = Depends(get_db)):
    """
    Fetch all countries and exchange rates, then store them in one transaction.

    503 when a source is unavailable, 500 when the transaction rolls back.
    """
    state = request.app.state
    result = await refresh_countries(
        db,
        state.settings,
        multiplier_source=state.multiplier_source,
        post_commit_hooks=state.post_commit_hooks
    )
    return RefreshResponse(message="Countries refreshed successfully", total=result.processed)


@router.get("/countries/image", responses={404: {"model": ErrorResponse}})
async def get_summary_image(request: Request):
    """Serve the generated summary image, 404 if none has been rendered."""
    settings = request.app.state.settings
    image_path = get_image_path(settings)

    if not image_path:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "Summary image not found"}
        )

    return FileResponse(
        image_path,
        media_type="image/png",
        filename=settings.IMAGE_FILE_NAME
    )


@router.get("/countries", response_model=List[CountryResponse])
async def get_countries(
    region: Optional[str] = Query(None, description="Filter by region (e.g., Africa, Europe)"),
    currency: Optional[str] = Query(None, description="Filter by currency code (e.g., NGN, USD)"),
    sort: Optional[str] = Query(None, description="Sort order: gdp_desc, gdp_asc, name_asc, name_desc"),
    db: Session = Depends(get_db)
):
    """Get all countries with optional filtering and sorting."""
    return get_all_countries(db=db, region=region, currency=currency, sort=sort)


@router.delete("/countries/{name}", response_model=MessageResponse, responses=NAME_ERRORS)
async def delete_country(name: str, db: Session = Depends(get_db)):
    """Delete a country by name (case-insensitive)."""
    validate_name(name)

    if not delete_country_by_name(db, name):
        raise CountryNotFoundError()

    return MessageResponse(message=f"Country '{name}' deleted successfully")


@router.get("/countries/{name}", response_model=CountryResponse, responses=NAME_ERRORS)
async def get_country(name: str, db: Session = Depends(get_db)):
    """Get a specific country by name (case-insensitive)."""
    validate_name(name)

    country = get_country_by_name(db, name)
    if not country:
        raise CountryNotFoundError()

    return country


# ============= Error Handlers =============

async def country_api_error_handler(request: Request, exc: CountryApiError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    content = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = {
        ".".join(str(part) for part in error["loc"][1:]) or "request": error["msg"]
        for error in exc.errors()
    }
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Validation failed", "details": details}
    )


async def pool_timeout_handler(request: Request, exc: PoolTimeoutError):
    logger.warning("Database connection pool exhausted: %s", exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"error": "Database busy", "details": "Please retry shortly"},
        headers={"Retry-After": "1"}
    )


async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "Internal server error"}
    )


# ============= Application Factory =============

def configure_logging(settings: Settings):
    logging.basicConfig(level=settings.LOG_LEVEL.upper(), format=LOG_FORMAT)


def create_app(
    settings: Optional[Settings] = None,
    database: Optional[Database] = None,
    multiplier_source: Optional[MultiplierSource] = None,
    post_commit_hooks: Optional[Sequence[PostCommitHook]] = None
) -> FastAPI:
    """
    Build the application and the resources it owns.

    Args:
        settings: Defaults to the environment-loaded settings
        database: Defaults to a Database built from ``settings``
        multiplier_source: Defaults to the random GDP multiplier
        post_commit_hooks: Defaults to rendering the summary image
    """
    settings = settings or default_settings
    configure_logging(settings)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="RESTful API for country data, currencies, and exchange rates",
        lifespan=lifespan
    )

    app.state.settings = settings
    app.state.database = database or Database.from_settings(settings)
    app.state.multiplier_source = multiplier_source or random_multiplier
    app.state.post_commit_hooks = (
        list(post_commit_hooks) if post_commit_hooks is not None else [summary_image_hook(settings)]
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(CountryApiError, country_api_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(PoolTimeoutError, pool_timeout_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.include_router(router)

    return app


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Apply schema migrations before serving traffic; release the pool on exit."""
    settings = app.state.settings
    logger.info("%s v%s starting", settings.APP_NAME, settings.APP_VERSION)
    logger.info("Database: %s", settings.database_host())
    try:
        run_migrations(app.state.database.engine)
    except SchemaMigrationError:
        logger.exception("Schema migration failed, refusing to start")
        raise

    yield

    logger.info("%s shutting down", settings.APP_NAME)
    app.state.database.dispose()


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=default_settings.HOST,
        port=default_settings.PORT,
        reload=False
    )
