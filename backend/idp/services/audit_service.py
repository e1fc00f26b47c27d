"""Audit service for OAuth authorization events."""

from __future__ import annotations

from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from idp.models.audit import AuthLog


AUDIT_ACTIONS = ("authorize", "consent", "token", "revoke")


class AuditService:
    """Persist immutable authorization log entries."""

    @staticmethod
    def log_event(
        db: Session,
        *,
        user_id: str,
        client_id: str,
        action: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuthLog:
        if action not in AUDIT_ACTIONS:
            raise ValueError(f"Unknown audit action: {action}")
        event = AuthLog(
            user_id=user_id,
            client_id=client_id,
            action=action,
            ip_address=ip_address,
            user_agent=(user_agent or "")[:512] or None,
        )
        db.add(event)
        db.commit()
        db.refresh(event)
        return event

    @staticmethod
    def list_events(
        db: Session,
        *,
        user_id: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Tuple[List[AuthLog], int]:
        query = db.query(AuthLog)
        if user_id is not None:
            query = query.filter(AuthLog.user_id == user_id)
        total = query.count()
        events = (
            query.order_by(AuthLog.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return events, total


audit_service = AuditService()
