"""
FastAPI application for the SQL playground sandbox
"""
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Config
from .errors import PoolInitializationError
from .playground_routes import playground_router
from .sandbox_manager import shutdown_connection_pool, startup_connection_pool
from .sanitize import sanitize_json_data

logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(title="SQL Playground API",
              description="Multi-session SQL sandbox execution engine",
              version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=Config.get_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


# Global exception handler for UTF-8 encoding issues
@app.exception_handler(UnicodeDecodeError)
async def unicode_decode_error_handler(request, exc: UnicodeDecodeError):
    """Handle UTF-8 encoding errors by returning sanitized JSON response"""
    error_data = {
        "error": "Encoding error occurred",
        "detail": "The response contains non-UTF-8 data that has been sanitized",
        "status_code": 500
    }
    return JSONResponse(
        status_code=500,
        content=sanitize_json_data(error_data),
        headers={"Content-Type": "application/json; charset=utf-8"}
    )


# Include routers
app.include_router(playground_router)


@app.on_event("startup")
def startup_event():
    logger.info(f"Starting SQL playground: {Config.summary()}")
    try:
        startup_connection_pool()
    except PoolInitializationError as e:
        # Requests report the unavailable backend as 503 until it comes back
        logger.error(f"Sandbox connection pool unavailable at startup: {e}")


@app.on_event("shutdown")
def shutdown_event():
    shutdown_connection_pool()


# Health check endpoint
@app.get("/api/health")
def health_check():
    return {"status": "healthy", "service": "SQL Playground API", "version": "1.0.0"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=Config.HOST, port=Config.PORT)
