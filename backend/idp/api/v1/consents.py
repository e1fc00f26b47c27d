"""Consent management for the signed-in user"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List

from idp.api.deps import get_current_user
from idp.core.database import get_db
from idp.core.exceptions import ResourceNotFoundError
from idp.models.user import User
from idp.schemas.oauth import ConsentedApplication, RevokeConsentRequest
from idp.schemas.response import APIResponse
from idp.services.consent_service import consent_service

router = APIRouter()


@router.get("", response_model=List[ConsentedApplication])
def list_consents(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Applications the current user has authorized

    Returns:
        One entry per client with the granted scope
    """
    return [
        ConsentedApplication(
            client_id=consent.client_id,
            app_name=app.name,
            app_description=app.description,
            scope=consent.scope,
            created_at=consent.created_at,
            owner_username=owner.username,
        )
        for consent, app, owner in consent_service.list_for_user(db, current_user.id)
    ]


@router.delete("", response_model=APIResponse)
def revoke_consent(
    body: RevokeConsentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Revoke a consent and every token issued under it

    Raises:
        ResourceNotFoundError: No consent exists for the client
    """
    if not consent_service.revoke(db, current_user.id, body.client_id):
        raise ResourceNotFoundError("Consent")
    return APIResponse(message="Authorization revoked", data={"client_id": body.client_id})
