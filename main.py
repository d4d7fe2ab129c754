# main.py - Signaling relay service

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import os
from dotenv import load_dotenv
import logging
import uvicorn

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Import route modules
from routes.room_management import router as room_router
from routes.participant_management import router as participant_router
from config.signaling_config import (
    SignalingSettings,
    get_allowed_origins,
    is_production,
    validate_environment,
)
from signaling import SignalingRelay, signaling_endpoint

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle app startup and shutdown"""
    # Startup
    logger.info("Starting up WebRTC signaling relay")
    try:
        validate_environment()
        logger.info("Environment validation passed")
    except Exception as e:
        logger.error(f"Environment validation failed: {e}")
        raise

    settings = SignalingSettings()
    app.state.relay = SignalingRelay(settings)
    logger.info(f"Signaling relay ready: {settings}")

    yield

    # Shutdown
    relay = app.state.relay
    logger.info(
        f"Shutting down signaling relay "
        f"({len(relay.registry)} clients, {len(relay.rooms)} rooms dropped)"
    )

app = FastAPI(
    title="WebRTC Signaling Relay",
    description="Room-based signaling relay for browser WebRTC peers",
    version="1.0.0",
    lifespan=lifespan,
    docs_url=None if is_production() else "/docs",
    redoc_url=None if is_production() else "/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_allowed_origins(),
    allow_credentials=True,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["*"],
)

if is_production():
    public_domain = os.getenv("PUBLIC_DOMAIN", "").replace("https://", "")
    if public_domain:
        app.add_middleware(
            TrustedHostMiddleware,
            allowed_hosts=[public_domain, "localhost"]
        )

# Include routers
app.include_router(room_router, prefix="/api", tags=["Room Management"])
app.include_router(participant_router, prefix="/api", tags=["Participant Management"])
app.add_api_websocket_route("/api/_ws", signaling_endpoint)

@app.get("/")
async def root():
    return {
        "message": "WebRTC Signaling Relay",
        "status": "running",
        "version": "1.0.0",
        "environment": os.getenv("APP_ENVIRONMENT", "development"),
        "endpoints": {
            "signaling": "/api/_ws?userId={user_id}",
            "list_rooms": "/api/rooms",
            "room_info": "/api/room/{room_id}",
            "room_participants": "/api/room/{room_id}/participants",
            "participants": "/api/participants",
            "participant_info": "/api/participant/{user_id}",
            "health": "/health"
        }
    }

@app.get("/health")
async def health_check(request: Request):
    relay = request.app.state.relay
    return {
        "status": "healthy",
        "connectedClients": len(relay.registry),
        "activeRooms": len(relay.rooms),
        "environment": os.getenv("APP_ENVIRONMENT", "development"),
    }

@app.exception_handler(500)
async def internal_server_error_handler(request, exc):
    logger.error(f"Internal server error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "message": "An unexpected error occurred"
        }
    )

@app.exception_handler(404)
async def not_found_handler(request, exc):
    return JSONResponse(
        status_code=404,
        content={
            "error": "Not found",
            "message": getattr(exc, "detail", None) or "The requested endpoint does not exist",
            "available_endpoints": [
                "/api/_ws?userId={user_id}",
                "/api/rooms",
                "/api/room/{room_id}",
                "/api/room/{room_id}/participants",
                "/api/participants",
                "/api/participant/{user_id}",
                "/health"
            ]
        }
    )

if __name__ == "__main__":
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "main:app",
        host=os.getenv("HOST", "0.0.0.0"),
        port=port,
        reload=False,
        log_level=os.getenv("LOG_LEVEL", "INFO").lower(),
        access_log=True,
        # Room state lives in process memory, so a single worker is required
        workers=1,
    )
