import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gatekeeper.app.routes.access import router as access_router
from gatekeeper.app.services.access import (
    build_access_context,
    configure_access_context,
    reset_access_context,
)
from gatekeeper.config import load_gate_config

load_dotenv()

logger = logging.getLogger("gatekeeper")

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("GATE_CORS_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

app = FastAPI(title="Gatekeeper Access API")

# Vite proxy origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(access_router)


@app.on_event("startup")
async def setup_access_context() -> None:
    config = load_gate_config()
    context = await build_access_context(config=config)
    await context.start()
    configure_access_context(context)
    app.state.access_context = context
    logger.info(
        "Access context ready user=%s environment=%s storage=%s",
        context.user_id,
        config.environment,
        config.storage_backend,
    )


@app.on_event("shutdown")
async def teardown_access_context() -> None:
    context = reset_access_context()
    if context is None:
        return
    await context.close()
    close_store = getattr(context.store, "close", None)
    if close_store is not None:
        await close_store()
