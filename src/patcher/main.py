"""FastAPI application for the tree patcher."""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
import uvicorn

from patcher.api.routes import router
from patcher.config import PatcherConfig
from patcher.services.deploy import DeployService
from patcher.services.download import DownloadService
from patcher.services.manifest_store import ManifestStore
from patcher.services.patch_chain import PatchChainResolver
from patcher.services.repair import RepairService
from patcher.services.scheduler import UpdateScheduler
from patcher.services.state_manager import StateManager
from patcher.services.updater import UpdateService
from patcher.utils.logging import setup_logger

DEFAULT_PORT = 12316


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown hooks.

    Startup:
    - Initialize logger (PATCHER_LOG_FILE, PATCHER_LOG_LEVEL)
    - Build config and wire services onto app.state
    - Start the background update check

    Shutdown:
    - Stop the scheduler and close pooled connections
    """
    logger = setup_logger(
        "patcher",
        os.getenv("PATCHER_LOG_FILE", "./logs/patcher.log"),
        level=os.getenv("PATCHER_LOG_LEVEL", "INFO"),
    )
    logger.info("Patcher starting up...")

    config = PatcherConfig.from_install_dir()
    logger.info(f"Install dir: {config.install_dir}, origin: {config.origin}")
    if not config.is_installed:
        logger.warning("No updateinfo.ini found, tree is not installed yet")

    state_manager = StateManager()
    downloader = DownloadService(config)
    deployer = DeployService(config, downloader)
    store = ManifestStore(config)
    resolver = PatchChainResolver(config, downloader, deployer)
    updater = UpdateService(config, state_manager, downloader, deployer, resolver, store)
    repair = RepairService(config, state_manager, downloader, deployer, store)
    scheduler = UpdateScheduler(updater, state_manager)

    app.state.config = config
    app.state.state_manager = state_manager
    app.state.downloader = downloader
    app.state.updater = updater
    app.state.repair = repair
    app.state.scheduler = scheduler

    scheduler.start()
    logger.info(f"Patcher ready, local version: {store.local_version() or 'unknown'}")

    yield

    logger.info("Patcher shutting down...")
    await scheduler.stop()
    await downloader.close()


app = FastAPI(
    title="Tree Patcher",
    description="Incremental patch updater for an installed application tree",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "tree-patcher", "version": "1.0.0"}


def main():
    """Main entry point for running the server."""
    uvicorn.run(
        app,
        host=os.getenv("PATCHER_HOST", "127.0.0.1"),
        port=int(os.getenv("PATCHER_PORT", DEFAULT_PORT)),
        log_level="info",
        access_log=True,
    )


if __name__ == "__main__":
    main()
