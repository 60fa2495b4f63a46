"""
FastAPI application — operational API for the inventory sync engine.

Mounts the sync and health routers and, when AUTO_START_CELERY is true,
runs a Celery worker and Beat scheduler as subprocesses for local use.
Version: 1.0.0
"""
import asyncio
import logging
import os
import platform
import signal
import subprocess
import sys
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from inventory_sync.core.exceptions import InventorySyncException
from inventory_sync.routes import health_router, sync_router

logger = logging.getLogger(__name__)

# Track Celery subprocesses for cleanup
_celery_processes: List[subprocess.Popen] = []

CELERY_QUEUES = "sync,default"


def _project_root() -> str:
    return os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def _spawn(cmd: List[str], label: str) -> Optional[subprocess.Popen]:
    kwargs = {"cwd": _project_root()}
    if platform.system() == "Windows":
        kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP

    try:
        process = subprocess.Popen(cmd, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, **kwargs)
    except OSError as e:
        logger.error(f"Failed to start {label}: {e}")
        return None
    logger.info(f"{label} started (PID: {process.pid})")
    return process


def _start_celery_worker() -> Optional[subprocess.Popen]:
    """Start Celery worker as a subprocess."""
    pool_type = "solo" if platform.system() == "Windows" else "prefork"
    cmd = [
        sys.executable, "-m", "celery",
        "-A", "inventory_sync.celery_app",
        "worker",
        f"--pool={pool_type}",
        "-Q", CELERY_QUEUES,
        "-l", "info",
        "--concurrency=2",
    ]
    return _spawn(cmd, "Celery worker")


def _start_celery_beat() -> Optional[subprocess.Popen]:
    """Start Celery Beat scheduler as a subprocess."""
    cmd = [
        sys.executable, "-m", "celery",
        "-A", "inventory_sync.celery_app",
        "beat",
        "-l", "info",
    ]
    return _spawn(cmd, "Celery Beat")


def _stop_celery_processes():
    """Stop all Celery subprocesses."""
    for process in _celery_processes:
        if process and process.poll() is None:
            logger.info(f"Stopping Celery process (PID: {process.pid})...")
            if platform.system() == "Windows":
                process.terminate()
            else:
                process.send_signal(signal.SIGTERM)
            try:
                process.wait(timeout=10)
                logger.info(f"Celery process {process.pid} stopped")
            except subprocess.TimeoutExpired:
                logger.warning(f"Force killing Celery process {process.pid}")
                process.kill()

    _celery_processes.clear()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    FastAPI lifespan event handler.

    On startup:
    - Optionally start the Celery worker and Beat subprocesses
    - Log the shared rate limiter status
    - Log the active catalog size

    On shutdown:
    - Stop Celery subprocesses
    """
    logger.info("=== Inventory Sync Starting ===")

    if os.getenv("AUTO_START_CELERY", "true").lower() == "true":
        worker_process = _start_celery_worker()
        if worker_process:
            _celery_processes.append(worker_process)

        # Small delay before starting beat
        await asyncio.sleep(2)

        beat_process = _start_celery_beat()
        if beat_process:
            _celery_processes.append(beat_process)

        logger.info(f"Started {len(_celery_processes)} Celery processes")
    else:
        logger.info("Celery auto-start disabled (AUTO_START_CELERY=false)")

    from inventory_sync.container import get_catalog_store, get_rate_limiter

    status = get_rate_limiter().get_status()
    if "error" in status:
        logger.warning(f"Rate limiter unavailable: {status['error']}")
    else:
        logger.info(f"Rate limiter initialized: {status}")

    try:
        active = get_catalog_store().count_active_items()
        logger.info(f"Catalog: {active} active items")
    except InventorySyncException as e:
        logger.warning(f"Could not read catalog size: {e}")

    logger.info("=== Inventory Sync Ready ===")

    yield

    logger.info("=== Inventory Sync Shutting Down ===")
    if _celery_processes:
        _stop_celery_processes()
    logger.info("Shutdown complete")


app = FastAPI(title="Inventory Sync", lifespan=lifespan)
logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(name)s:%(message)s")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)
app.include_router(sync_router)
