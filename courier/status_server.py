#!/usr/bin/env python3
"""
Status Server for Report Courier
Read-only HTTP view of the directory snapshot and files in work
"""

import logging
import threading
from typing import List, Optional

import uvicorn
from fastapi import FastAPI
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class StatusResponse(BaseModel):
    """Status snapshot served on GET /."""
    dir_files: List[str]
    working_files: List[str]


def create_status_app(registry) -> FastAPI:
    """
    Build the status application for a task registry.

    Args:
        registry: TaskRegistry whose snapshot() is served

    Returns:
        FastAPI: Application with GET / and GET /health
    """
    app = FastAPI(title="Report Courier status", docs_url=None, redoc_url=None)

    @app.get("/", response_model=StatusResponse)
    def status():
        return registry.snapshot()

    @app.get("/health")
    def health():
        return {"status": "ok"}

    return app


class StatusServer:
    """
    Runs the status application with uvicorn in a daemon thread.

    Example:
        >>> server = StatusServer(registry, host='0.0.0.0', port=9090)
        >>> server.start()
        >>> server.stop()
    """

    def __init__(self, registry, host: str = "0.0.0.0", port: int = 9090):
        self.host = host
        self.port = port
        self.app = create_status_app(registry)
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None

    def start(self):
        if self._thread is not None:
            logger.warning("Status server already running")
            return

        config = uvicorn.Config(self.app, host=self.host, port=self.port, log_level="warning")
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(target=self._server.run, name="status-server", daemon=True)
        self._thread.start()
        logger.info(f"Status endpoint listening on {self.host}:{self.port}")

    def stop(self):
        if self._server is None:
            return

        self._server.should_exit = True
        self._thread.join(timeout=5)
        self._server = None
        self._thread = None
        logger.info("Status endpoint stopped")
