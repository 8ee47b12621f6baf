"""
FastAPI application entry point for the Interview Feedback API.

This is the main application file that configures and runs the FastAPI server.
"""
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .database import Database
from .api.v0 import auth as auth_v0
from .api.v0 import feedback as feedback_v0
from .api.v0 import questions as questions_v0
from .services.errors import FeedbackServiceError
from .services.feedback_orchestrator import FeedbackOrchestrator
from .services.generation_client import GenerationClient

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def setup_tracing():
    """Configure LangSmith tracing based on settings."""
    if (settings.langchain_tracing_v2 or "").lower() == "true":
        logger.info("Enabling LangSmith tracing...")
        os.environ["LANGCHAIN_TRACING_V2"] = "true"
        os.environ["LANGCHAIN_ENDPOINT"] = settings.langchain_endpoint
        if settings.langchain_api_key:
            os.environ["LANGCHAIN_API_KEY"] = settings.langchain_api_key
        if settings.langchain_project:
            os.environ["LANGCHAIN_PROJECT"] = settings.langchain_project
        logger.info(f"LangSmith project: {os.environ.get('LANGCHAIN_PROJECT')}")
    else:
        logger.info("LangSmith tracing is disabled")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    # Startup
    logger.info("Starting Interview Feedback API...")

    # Configure tracing
    setup_tracing()

    database = Database(settings.database_url)
    database.open()
    await database.create_all()

    generation_client = GenerationClient.from_settings(settings)
    generation_client.open()

    app.state.database = database
    app.state.generation_client = generation_client
    app.state.feedback_orchestrator = FeedbackOrchestrator.from_settings(generation_client, settings)

    yield

    # Shutdown
    logger.info("Shutting down Interview Feedback API...")
    generation_client.close()
    await database.close()


# Create FastAPI application
app = FastAPI(
    title="Interview Feedback API",
    description="""
    AI feedback for mock interview answers.

    ## Features

    * **Question Catalogue**: Interview categories, their questions and grading criteria
    * **Feedback Generation**: Answers are cleaned up, graded against the category criteria and scored
    * **Quota**: Non-admin users get a fixed number of AI feedback sessions

    ## Endpoints

    * `/api/v0/auth/` - user sync, profile and token refresh
    * `/api/v0/questions/` - categories and questions
    * `/api/v0/feedback/` - feedback generation, saving and eligibility
    """,
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Error Responses
# =============================================================================

@app.exception_handler(FeedbackServiceError)
async def feedback_service_error_handler(request: Request, exc: FeedbackServiceError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    logger.info(f"Rejected malformed request to {request.url.path}: {exc.errors()}")
    return JSONResponse(status_code=400, content={"error": "Invalid request body."})


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content={"error": "Internal server error."})


# Register API routers
app.include_router(auth_v0.router)
app.include_router(questions_v0.router)
app.include_router(feedback_v0.router)


@app.get("/", tags=["health"])
async def root():
    """Root endpoint - API information."""
    return {
        "name": "Interview Feedback API",
        "version": "0.1.0",
        "status": "running",
        "environment": settings.app_env,
        "docs": "/docs",
    }


@app.get("/health", tags=["health"])
async def health_check():
    """Health check endpoint for container orchestration."""
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.api_host, port=settings.api_port, log_level=settings.log_level.lower())
