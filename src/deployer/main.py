"""FastAPI application for the device deployer."""

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
import uvicorn

from deployer.api.routes import router
from deployer.config import load_config
from deployer.services.backend import HttpDeviceBackend
from deployer.services.reporter import ReportService
from deployer.services.state_manager import StateManager
from deployer.utils.logging import setup_logger

SERVICE_NAME = "device-deployer"
VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown hooks.

    Startup:
    - Load configuration and initialize logger
    - Create the log directory
    - Build the agent client and optional reporter
    - Store the StateManager on app.state for route dependencies

    Shutdown:
    - Log shutdown message
    """
    # Startup
    config = load_config()
    logger = setup_logger(log_file=config.log_file, level=config.logging_level)
    logger.info("Device deployer starting up...")

    log_dir = Path(config.log_file).parent
    log_dir.mkdir(parents=True, exist_ok=True)
    logger.debug(f"Ensured directory exists: {log_dir}")

    backend = HttpDeviceBackend(config.backend_url, timeout=config.backend_timeout)
    reporter = ReportService(config.report_url) if config.report_url else None
    if reporter is None:
        logger.info("No report_url configured, stage events stay local")

    app.state.config = config
    app.state.state_manager = StateManager(config, backend, backend, reporter)

    logger.info(
        f"Device deployer ready on port {config.port} (agent: {config.backend_url})"
    )

    yield

    # Shutdown
    logger.info("Device deployer shutting down...")


# Create FastAPI application
app = FastAPI(
    title="Device Deployer",
    description="Firmware and therapy profile deployment for paired devices",
    version=VERSION,
    lifespan=lifespan,
)

# Register API routes
app.include_router(router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": SERVICE_NAME, "version": VERSION}


def main():
    """Main entry point for running the server."""
    config = load_config()
    uvicorn.run(
        app,  # Pass app object directly for debug support
        host=config.host,
        port=config.port,
        log_level=config.log_level.lower(),
        access_log=True,
    )


if __name__ == "__main__":
    main()
