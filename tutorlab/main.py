import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from tutorlab.config import get_settings
from tutorlab.core.ai_services import build_ai_services, cache_sweeper
from tutorlab.routers import gemini

settings = get_settings()
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "ai", None) is None:
        app.state.ai = build_ai_services(settings)
    task = asyncio.create_task(
        cache_sweeper(app.state.ai.cache, settings.cache_sweep_interval_seconds)
    )
    try:
        yield
    finally:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


app = FastAPI(title="Tutorlab API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_url],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(gemini.router)


@app.get("/")
def root():
    return {"message": "Tutorlab API", "docs": "/docs"}
