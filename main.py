"""Artifact Manager server entry point.

Run with ``python main.py [flags]`` or ``uvicorn --factory main:build_app``.
Every flag can be overridden by an ``AM_`` prefixed environment variable.
"""
from __future__ import annotations

import sys
from typing import Any, Mapping

import structlog
import uvicorn
from fastapi import FastAPI

from amgr.api import create_app
from amgr.log_config import setup_logging
from amgr.settings import Settings, load_settings


def build_app(overrides: Mapping[str, Any] | None = None) -> FastAPI:
    settings = load_settings(overrides)
    setup_logging(settings)
    return create_app(settings)


def serve(settings: Settings) -> None:
    setup_logging(settings)
    log = structlog.get_logger("amgr")
    log.info("serving requests", addr=settings.serve_addr, dir=settings.dir, orchestrator=settings.orchestrator)
    uvicorn.run(create_app(settings), host=settings.addr or "0.0.0.0", port=settings.port, log_config=None)


if __name__ == "__main__":
    import cli

    raise SystemExit(cli.main(["serve", *sys.argv[1:]]))
