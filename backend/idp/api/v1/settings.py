"""Feature flag routes - public read, admin write"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from idp.api.deps import get_current_admin_user
from idp.core.database import get_db
from idp.models.user import User
from idp.schemas.setting import PublicSettings, SettingsUpdate
from idp.services.settings_service import settings_service

router = APIRouter()


@router.get("/public/settings", response_model=PublicSettings)
def get_public_settings(db: Session = Depends(get_db)):
    """Flags the login and registration pages need before sign-in"""
    return settings_service.get_public(db)


@router.put("/admin/settings", response_model=PublicSettings)
def update_settings(
    data: SettingsUpdate,
    current_user: User = Depends(get_current_admin_user),
    db: Session = Depends(get_db)
):
    """
    Update feature flags (admin only)

    Args:
        data: Flags to change; omitted flags keep their value
    """
    return settings_service.update(db, allow_registration=data.allow_registration)
