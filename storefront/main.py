import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from config import settings
from storefront.api.routes import router
from storefront.services.handlers import cancel_running
from storefront.state.store import cleanup_periodically, init_database, close_database, reset_state

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
    ]
)

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting up checkout service...")
    await init_database()
    cleanup = asyncio.create_task(cleanup_periodically())
    yield
    # Shutdown
    logger.info("Shutting down checkout service...")
    cleanup.cancel()
    await asyncio.gather(cleanup, return_exceptions=True)
    await cancel_running()
    reset_state()
    await close_database()

app = FastAPI(title="Storefront Checkout", lifespan=lifespan)
app.include_router(router)

@app.get("/")
def read_root():
    return {
        "message": "Storefront checkout service",
        "storefront": settings.STOREFRONT_ID,
    }
