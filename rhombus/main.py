from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from rhombus.config import settings
from rhombus.api.routes import router as http_router
from rhombus.api.websocket import router as ws_router
from rhombus.services.workbench import Workbench
import asyncio
import logging

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger("rhombus")

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Builds the workbench for the configured workspace and tears it down on exit"""
    logger.info("Rhombus backend starting...")
    logger.info(f"Workspace: {settings.WORKSPACE_ROOT}")
    logger.info(f"Token budget: {settings.MAX_TOKENS}")
    workbench = Workbench.create(settings)
    await workbench.start(asyncio.get_running_loop())
    app.state.workbench = workbench
    yield
    workbench.shutdown()
    logger.info("Rhombus backend shutting down.")

app = FastAPI(
    title="Rhombus",
    description="Directive indexing and context assembly backend for AI-assisted editing",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(http_router, prefix="/api")
app.include_router(ws_router)

@app.get("/")
async def root():
    return {"project": "Rhombus", "status": "alive", "version": "1.0.0"}

@app.get("/health")
async def health():
    return {"status": "ok"}
