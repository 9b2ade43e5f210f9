"""
Key Custodian API Router
Reference HTTP surface of one key custodian: releases its key share to
requesters admitted by the listing's seal_approve policy.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, FastAPI, Request
from pydantic import BaseModel

from infrastructure.errors import error_tracker, register_exception_handlers
from seal.access import FetchKeyRequest
from seal.custodian import KeyCustodian

logger = logging.getLogger("CustodianAPI")

router = APIRouter(prefix="/v1", tags=["Key Custodian"])


# ============================================
# MODELS
# ============================================

class FetchKeyBody(BaseModel):
    call_skeleton: Dict[str, Any]
    identifier: str
    encrypted_share: str
    ephemeral_encryption_key: str
    verification_key: str
    request_signature: str
    credential: Dict[str, Any]


class FetchKeyReply(BaseModel):
    sealed_share: str


def _custodian(request: Request) -> KeyCustodian:
    return request.app.state.custodian


# ============================================
# ENDPOINTS
# ============================================

@router.post("/fetch_key", response_model=FetchKeyReply)
async def fetch_key(body: FetchKeyBody, request: Request):
    """
    Release this custodian's share of a listing key.

    The credential and request signature are checked first, then the
    listing's admission predicate is evaluated for the sender.
    Rejections come back as `{success: false, error: {code, message}}`.
    """
    custodian = _custodian(request)
    fetch = FetchKeyRequest.from_dict(body.model_dump())
    sealed = await custodian.fetch_key(fetch)
    return FetchKeyReply(sealed_share=sealed.hex())


@router.get("/service")
async def service_info(request: Request):
    """Public parameters needed to encrypt to this custodian"""
    return _custodian(request).service_info()


@router.get("/errors")
async def error_stats():
    return error_tracker.get_stats()


def create_app(custodian: KeyCustodian) -> FastAPI:
    app = FastAPI(title=f"SealForge Key Custodian ({custodian.name})")
    app.state.custodian = custodian
    register_exception_handlers(app)
    app.include_router(router)
    logger.info(f"🔐 Custodian {custodian.name} ({custodian.object_id}) ready")
    return app
