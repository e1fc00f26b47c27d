"""System settings (feature flags) persisted in the database."""

from __future__ import annotations

from typing import Dict, Optional

from sqlalchemy.orm import Session

from idp.models.setting import SystemSetting

ALLOW_REGISTRATION = "allow_registration"


class SettingsService:

    @staticmethod
    def get(db: Session, key: str) -> Optional[str]:
        row = db.query(SystemSetting).filter(SystemSetting.key == key).first()
        return row.value if row else None

    @staticmethod
    def set(db: Session, key: str, value: str) -> None:
        row = db.query(SystemSetting).filter(SystemSetting.key == key).first()
        if row is None:
            db.add(SystemSetting(key=key, value=value))
        else:
            row.value = value
        db.commit()

    @staticmethod
    def is_registration_allowed(db: Session) -> bool:
        # Registration is on unless explicitly switched off
        return SettingsService.get(db, ALLOW_REGISTRATION) != "false"

    @staticmethod
    def get_public(db: Session) -> Dict[str, bool]:
        return {"allow_registration": SettingsService.is_registration_allowed(db)}

    @staticmethod
    def update(db: Session, *, allow_registration: Optional[bool] = None) -> Dict[str, bool]:
        if allow_registration is not None:
            SettingsService.set(db, ALLOW_REGISTRATION, "true" if allow_registration else "false")
        return SettingsService.get_public(db)


settings_service = SettingsService()
