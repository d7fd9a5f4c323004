from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from researcher.api.deps import get_research_service
from researcher.api.routes import research, sessions
from researcher.config import settings
from researcher.errors import (
    ConfigurationError,
    QuotaExceeded,
    ResearchError,
    SessionBusy,
    SessionNotFound,
    UpstreamFailure,
)
from researcher.services import logger as log_service

ERROR_STATUS: dict[type[ResearchError], int] = {
    ConfigurationError: 500,
    QuotaExceeded: 429,
    UpstreamFailure: 502,
    SessionNotFound: 404,
    SessionBusy: 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    yield
    # Shutdown
    await get_research_service().cancel_background_runs()


app = FastAPI(
    title="Researcher",
    description="ReAct web research agent with a live reasoning trace",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ResearchError)
async def research_error_handler(request: Request, exc: ResearchError):
    status_code = next(
        (code for error_type, code in ERROR_STATUS.items() if isinstance(exc, error_type)),
        500,
    )
    log_service.log_event(
        event_type="request_failed",
        message=exc.message,
        path=request.url.path,
        error_type=type(exc).__name__,
        status_code=status_code,
    )
    return JSONResponse(status_code=status_code, content={"error": exc.message})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=400, content={"error": str(exc)})


# Routes
app.include_router(research.router)
app.include_router(sessions.router)


@app.get("/api/health")
async def health():
    return {"status": "ok", "service": "researcher"}
