# backend/main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from routes import broadcast, stages, voice, websocket_routes
from config import get_settings
from services.stage_catalog import default_catalog
from utils.logger import setup_logging, get_logger
from utils.redis_client import test_connection

setup_logging()
log = get_logger(__name__)
settings = get_settings()

VERSION = "1.0.0"

app = FastAPI(
    title="Mock Interview Pipeline API",
    version=VERSION,
    description="Multi-stage, AI-evaluated mock interviews with live demo broadcast and a voice coach"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(stages.router)
app.include_router(broadcast.router)
app.include_router(voice.router)
app.include_router(websocket_routes.router)


@app.on_event("startup")
async def startup_event():
    """Startup tasks"""
    log.info(f"🚀 Starting Mock Interview Pipeline v{VERSION} ({len(default_catalog)} stages)")

    # Test Redis
    redis_ok = await test_connection()
    if redis_ok:
        log.info("✅ Redis connected")
    else:
        log.warning("⚠️ Redis connection failed")

    # Log configured services
    services = []
    if settings.llm_api_key:
        services.append("✅ Gemini evaluation")
    if settings.livekit_api_key:
        services.append("✅ LiveKit broadcast")
    if settings.elevenlabs_agent_id:
        services.append("✅ ElevenLabs voice agent")
    if settings.firebase_storage_bucket:
        services.append("✅ Firebase recordings")
    if settings.smtp_host:
        services.append("✅ SMTP notifications")

    log.info(f"Services: {', '.join(services) if services else 'None'}")


@app.on_event("shutdown")
async def shutdown_event():
    """Cleanup on shutdown"""
    log.info("🛑 Shutting down...")
    log.info("✅ Shutdown complete")


@app.get("/")
async def root():
    return {
        "message": f"Mock Interview Pipeline v{VERSION}",
        "status": "operational",
        "stages": [s.name for s in default_catalog.all()],
        "docs": "/docs"
    }


@app.get("/health")
async def health_check():
    """Health check"""
    return {
        "status": "healthy",
        "version": VERSION,
        "services": {
            "gemini": bool(settings.llm_api_key),
            "livekit": bool(settings.livekit_api_key and settings.livekit_api_secret),
            "elevenlabs": bool(settings.elevenlabs_api_key and settings.elevenlabs_agent_id),
            "firebase": bool(settings.firebase_storage_bucket),
            "smtp": bool(settings.smtp_host),
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
