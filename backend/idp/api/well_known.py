"""OpenID Connect discovery documents"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from idp.api.deps import get_key_manager
from idp.services.key_manager import KeyManager
from idp.services.oauth_service import discovery_document

router = APIRouter()

_CACHEABLE = {"Cache-Control": "public, max-age=3600"}


@router.get("/openid-configuration")
def openid_configuration():
    """Provider metadata"""
    return JSONResponse(discovery_document(), headers=_CACHEABLE)


@router.get("/jwks.json")
def jwks(key_manager: KeyManager = Depends(get_key_manager)):
    """Public signing keys for id_token verification"""
    return JSONResponse(key_manager.jwks(), headers=_CACHEABLE)
