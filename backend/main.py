import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from config import settings

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Matchroom backend starting up...")
    if not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY not set — narratives will use the local fallback")
    yield
    logger.info("Backend shutting down.")


app = FastAPI(
    title="Matchroom",
    version="0.1.0",
    description="Real-time multiplayer compatibility rooms with mutual identity reveal",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "matchroom", "version": "0.1.0"}


from routers.room_router import router as room_router
from routers.ws_router import router as ws_router

app.include_router(room_router, prefix="/api")
app.include_router(ws_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
