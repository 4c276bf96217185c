"""
Main FastAPI application.

WHY: This is the entry point for the application. It configures middleware,
routes, exception handlers, and other application-level concerns.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from formbuilder.core.config import settings
from formbuilder.core.exceptions import AppException
from formbuilder.core.exception_handlers import (
    app_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    generic_exception_handler,
)
from formbuilder.middleware import RequestContextMiddleware
from formbuilder.api import billing


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    WHY: Factory pattern allows easier testing with different configurations.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Form Builder API",
        version=settings.VERSION,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    # WHY: Exception handlers ensure consistent error responses across the API
    # and prevent sensitive data leaks in error messages (OWASP A04)
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # WHY: Request IDs correlate the several Stripe calls one change makes
    app.add_middleware(RequestContextMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )

    @app.get("/health", tags=["health"])
    async def health_check() -> dict:
        """
        Health check endpoint.

        WHY: Allows load balancers and monitoring to verify service health
        without checking authentication, the database, or Stripe.
        """
        return {"status": "healthy", "version": settings.VERSION}

    app.include_router(billing.router, prefix=settings.API_V1_PREFIX)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    # WHY: This allows running the app directly with `python -m formbuilder.main`
    # for development. In production, use `uvicorn formbuilder.main:app` directly.
    uvicorn.run(
        "formbuilder.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info" if settings.DEBUG else "warning",
    )
