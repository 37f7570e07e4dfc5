"""
FastAPI application factory
"""
import logging
import traceback
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from fintrack.config import get_settings
from fintrack.domain.errors import ConflictError, NotFoundError, StorageError, ValidationError
from fintrack.infrastructure.db.session import check_db_connection
from fintrack.readmodels.cache import AggregationCache
from fintrack.api.v1 import accounts, aggregations, budgets, categories, recurring_incomes, transactions

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: 422,
    NotFoundError: 404,
    ConflictError: 409,
    StorageError: 503,
}


def create_app(cache: AggregationCache | None = None, start_jobs: bool | None = None) -> FastAPI:
    """
    Application factory - creates and configures the FastAPI app

    Args:
        cache: aggregation cache to share between requests (new one if omitted)
        start_jobs: run the background scheduler (default: settings.SCHEDULER_ENABLED)

    Returns:
        Configured FastAPI app
    """
    settings = get_settings()
    if start_jobs is None:
        start_jobs = settings.SCHEDULER_ENABLED

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_jobs:
            from fintrack.application.scheduler import start_scheduler, stop_scheduler
            start_scheduler(cache=app.state.aggregation_cache)
            yield
            stop_scheduler()
        else:
            yield

    app = FastAPI(
        title="FinTrack Ledger",
        debug=settings.DEBUG,
        lifespan=lifespan,
    )
    app.state.aggregation_cache = cache if cache is not None else AggregationCache()

    # Error-logging middleware - catches everything the domain handlers below do not
    from starlette.middleware.base import BaseHTTPMiddleware
    from starlette.responses import Response

    class ErrorLoggingMiddleware(BaseHTTPMiddleware):
        async def dispatch(self, request, call_next):
            try:
                response = await call_next(request)
                return response
            except Exception:
                tb_str = traceback.format_exc()
                logger.error(f"\n{'='*60}\nERROR on {request.method} {request.url.path}\n{tb_str}{'='*60}")
                return Response(content="Internal Server Error", status_code=500)

    app.add_middleware(ErrorLoggingMiddleware)

    # Domain errors -> HTTP
    def _make_handler(code: int):
        async def handler(request: Request, exc: Exception):
            if code >= 500:
                logger.error(f"{request.method} {request.url.path}: {exc}")
            return JSONResponse(status_code=code, content={"detail": str(exc)})
        return handler

    for error_cls, code in ERROR_STATUS.items():
        app.add_exception_handler(error_cls, _make_handler(code))

    # Routers
    app.include_router(accounts.router)
    app.include_router(categories.router)
    app.include_router(transactions.router)
    app.include_router(aggregations.router)
    app.include_router(recurring_incomes.router)
    app.include_router(budgets.router)

    # Health checks
    @app.get("/health", response_class=PlainTextResponse, tags=["system"])
    def health():
        """Health check endpoint"""
        return "ok"

    @app.get("/ready", response_class=PlainTextResponse, tags=["system"])
    def ready():
        """Readiness check endpoint (checks the database)"""
        check_db_connection()
        return "ok"

    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "fintrack.main:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )
