from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.openapi.docs import get_swagger_ui_html
from fastapi.middleware.cors import CORSMiddleware
import logging
import sys

from simdash import __version__
from simdash.core.config import settings
from simdash.dependencies import agent_client, poller, registry, syncer
from simdash.routers import configuration, devices, health, simulators


# Configure logging first
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger("uvicorn")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    if settings.poller_enabled:
        logger.info("Starting simulator poller...")
        await poller.start()
    if settings.sync_enabled:
        logger.info("Starting device sync service...")
        await syncer.start()

    yield

    # Shutdown
    logger.info("Stopping device sync service...")
    await syncer.stop()
    logger.info("Stopping simulator poller...")
    await poller.stop()

    await registry.cancel_pending()
    await agent_client.aclose()
    logger.info("Simulator agent client closed")


app = FastAPI(
    title="SimDash Fleet API",
    version=__version__,
    docs_url=None,
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
    allow_headers=["*"],
)

app.include_router(health.router, prefix="/health", tags=["Health"])
app.include_router(devices.router, prefix="/api", tags=["Devices"])
app.include_router(configuration.router, prefix="/api", tags=["Configuration"])
app.include_router(simulators.router, prefix="/api/simulators", tags=["Simulators"])


# Custom docs endpoint
@app.get("/docs", include_in_schema=False)
async def custom_swagger_ui_html():
    return get_swagger_ui_html(openapi_url=app.openapi_url, title=app.title)
