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
"""Traitguard -- Health Routes."""

from fastapi import APIRouter

from traitguard._version import __version__
from traitguard.api._shared import get_service

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint (K8s compatible)."""
    service = await get_service()
    checks = await service.health_check()
    status = "healthy" if checks["validation_ready"] else "degraded"
    result = {"status": status, "version": __version__, **checks}
    result["logging"] = service.log.get_log_stats()
    return result


@router.get("/ready")
async def readiness_check():
    """Readiness probe."""
    return {"status": "ready", "version": __version__}
