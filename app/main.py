import logging
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.core.config import settings
from app.core.errors import SubscriptionServiceError
from app.core.logging import configure_logging

configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="DentalOS Subscription Service", version="1.0.0")

ALLOWED_ORIGINS = settings.get_allowed_origins()

# CORS headers are added even on errors via the exception handlers below
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["*"],
)


def _with_cors(request: Request, response: JSONResponse) -> JSONResponse:
    origin = request.headers.get("origin")
    if origin and origin in ALLOWED_ORIGINS:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Access-Control-Allow-Methods"] = "*"
        response.headers["Access-Control-Allow-Headers"] = "*"
    return response


@app.exception_handler(SubscriptionServiceError)
async def subscription_error_handler(request: Request, exc: SubscriptionServiceError):
    """Render service errors with their status code and field details"""
    logger.warning(f"[API] {request.method} {request.url.path} -> {exc.status_code} {exc.error_code}: {exc.message}")
    return _with_cors(request, JSONResponse(status_code=exc.status_code, content=exc.to_dict()))


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Ensure CORS headers are included even on unhandled exceptions"""
    logger.exception(f"[API] Unhandled exception on {request.method} {request.url.path}: {exc}")
    response = JSONResponse(
        status_code=500,
        content={"detail": f"Internal server error: {str(exc)}"}
    )
    return _with_cors(request, response)


@app.get("/")
async def root():
    return {"message": "DentalOS Subscription Service", "version": "1.0.0"}


@app.get("/health")
async def health():
    return {"status": "healthy"}
