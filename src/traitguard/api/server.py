# Traitguard
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of Traitguard.
#
# Traitguard is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
#    You may use, modify, and distribute this file under AGPL-3.0.
#    See LICENSE for the full text.
#
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#    For proprietary use, SaaS deployment, or enterprise licensing.
#    See LICENSE-ENTERPRISE.md or contact info@phoenixlink.co.za
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""
Traitguard -- API Server

    uvicorn traitguard.api.server:app --port 8011
    traitguard-server --host 127.0.0.1 --port 8011
"""

import argparse
import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from traitguard._version import __version__
from traitguard.api._shared import _get_tg_log
from traitguard.api.routes.generate import router as generate_router
from traitguard.api.routes.health import router as health_router

logger = logging.getLogger("traitguard.api.server")

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8011


# =============================================================================
# HTTP REQUEST LOGGING MIDDLEWARE
# =============================================================================


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log every HTTP request with method, path, status, and latency."""

    async def dispatch(self, request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        latency_ms = int((time.time() - start) * 1000)
        path = request.url.path
        # Skip noisy probes
        if path not in ("/health", "/ready"):
            _get_tg_log().http_request(
                method=request.method,
                path=path,
                status=response.status_code,
                latency_ms=latency_ms,
            )
        return response


def create_app() -> FastAPI:
    app = FastAPI(
        title="Traitguard API",
        description="Character trait protection for LLM role-play",
        version=__version__,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=r"http://(localhost|127\.0\.0\.1):\d+",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(health_router)
    app.include_router(generate_router)
    return app


app = create_app()


def main(argv: list[str] | None = None) -> None:
    """Run the API server under uvicorn."""
    import uvicorn

    parser = argparse.ArgumentParser(prog="traitguard-server", description=__doc__.strip().splitlines()[0])
    parser.add_argument("--host", default=DEFAULT_HOST)
    parser.add_argument("--port", type=int, default=DEFAULT_PORT)
    parser.add_argument("--log-level", default="info")
    args = parser.parse_args(argv)

    log = _get_tg_log()
    log.server_start(host=args.host, port=args.port, version=__version__, log_file=log.log_file)
    try:
        uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level)
    finally:
        log.server_stop()


if __name__ == "__main__":
    main()
