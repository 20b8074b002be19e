"""Main FastAPI application module.

This module initializes the FastAPI application and registers all route handlers.
"""

import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.exceptions import ConflictRetryExhaustedError, PartialCascadeIncompleteError
from core.logging_config import setup_logging
from config import (
    CORS_ALLOWED_ORIGINS,
    API_HOST,
    API_PORT,
)
from api.routes import assignment_route, auth, class_route, user_route

# Setup logging
setup_logging()
logger = logging.getLogger(__name__)

# Initialize FastAPI application
app = FastAPI(
    title="Classroom API",
    description="Backend API for classes, memberships, invitations and quizzes.",
    version="1.0.0",
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register route handlers
app.include_router(auth.router)
app.include_router(user_route.router)
app.include_router(class_route.router)
app.include_router(assignment_route.router)


@app.exception_handler(ConflictRetryExhaustedError)
async def retry_exhausted_handler(request: Request, exc: ConflictRetryExhaustedError):
    """Too much contention on the same documents; the client may retry."""
    logger.warning("%s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"detail": str(exc)})


@app.exception_handler(PartialCascadeIncompleteError)
async def partial_cascade_handler(request: Request, exc: PartialCascadeIncompleteError):
    logger.error("%s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": str(exc), "deleted": exc.deleted},
    )


@app.get("/", summary="API root", tags=["Info"])
def root() -> dict:
    """API root, returning API information and documentation links.

    Returns:
        Dictionary with API information and documentation links.
    """
    return {
        "name": "Classroom API",
        "version": "1.0.0",
        "docs": {
            "swagger": "/docs",
            "redoc": "/redoc",
        },
        "health": "/api/health",
    }


@app.get("/api/health", summary="Health check", tags=["Health"])
def health() -> dict:
    """Health check endpoint.

    Returns:
        Dictionary with status "ok".
    """
    return {"status": "ok"}


# --- Startup code for direct execution ---
if __name__ == "__main__":
    import uvicorn

    server_url = f"http://{API_HOST}:{API_PORT}"
    logger.info("Starting Classroom API at %s (docs: %s/docs)", server_url, server_url)
    uvicorn.run("app:app", host=API_HOST, port=API_PORT, reload=True)
