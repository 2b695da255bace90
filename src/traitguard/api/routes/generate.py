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
Traitguard -- Generation Routes

POST /api/generate              -- validated character reply
GET  /api/validation/stats      -- correction loop counters
PUT  /api/subjects/{subject_id} -- create or replace a subject's state
GET  /api/subjects/{subject_id} -- current subject state
"""

import logging

from fastapi import APIRouter, HTTPException

from traitguard.api._shared import GenerateRequest, SubjectStateRequest, get_service, get_store
from traitguard.errors import SubjectNotFoundError
from traitguard.validation.service import GenerationOptions, ValidatedLLMRequest

logger = logging.getLogger("traitguard.api.generate")

router = APIRouter()


@router.post("/api/generate")
async def generate(request: GenerateRequest):
    """Generate a reply with character trait protection."""
    if not request.user_message.strip():
        raise HTTPException(status_code=400, detail="No message provided")

    service = await get_service()
    response = await service.generate(
        ValidatedLLMRequest(
            conversation_id=request.conversation_id,
            user_message=request.user_message,
            system_prompt=request.system_prompt,
            adventure_type=request.adventure_type,
            character_name=request.character_name,
            character_pronoun=request.character_pronoun,
            message_history=[m.model_dump() for m in request.message_history],
            subject_id=request.subject_id,
            context_window=request.context_window,
        ),
        GenerationOptions(
            enable_validation=request.enable_validation,
            bypass_for_admin_users=request.bypass_for_admin_users,
            quick_validation_only=request.quick_validation_only,
        ),
    )
    if not response.success:
        logger.warning("Generation failed for %s: %s", request.conversation_id, response.error)
    return response.to_dict()


@router.get("/api/validation/stats")
async def validation_stats():
    service = await get_service()
    return service.orchestrator.stats().to_dict()


@router.put("/api/subjects/{subject_id}")
async def put_subject(subject_id: str, body: SubjectStateRequest):
    store = await get_store()
    await store.upsert_subject(subject_id, body.state)
    return {"subject_id": subject_id, "saved": True}


@router.get("/api/subjects/{subject_id}")
async def get_subject(subject_id: str):
    store = await get_store()
    try:
        state = await store.load_state(subject_id)
    except SubjectNotFoundError:
        raise HTTPException(status_code=404, detail=f"Subject not found: {subject_id}")
    return {"subject_id": subject_id, "state": state}
