"""Authorization audit log routes"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from idp.api.deps import get_current_user
from idp.core.database import get_db
from idp.models.user import User
from idp.schemas.audit import AuthLogPage, AuthLogResponse
from idp.services.audit_service import audit_service

router = APIRouter()


@router.get("", response_model=AuthLogPage)
def list_auth_logs(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Authorization events, newest first

    Admins see every entry; other users see their own.
    """
    user_filter = None if current_user.role == "admin" else current_user.id
    events, total = audit_service.list_events(
        db, user_id=user_filter, page=page, page_size=page_size
    )
    return AuthLogPage(
        logs=[AuthLogResponse.model_validate(event) for event in events],
        total=total,
        page=page,
        page_size=page_size,
    )
