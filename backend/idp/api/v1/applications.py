"""Application (OAuth client) management routes"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from typing import List

from idp.api.deps import get_developer_user
from idp.core.database import get_db
from idp.models.application import Application
from idp.models.user import User
from idp.schemas.application import (
    ApplicationCreate,
    ApplicationResponse,
    ApplicationUpdate,
    ApplicationWithSecret,
)
from idp.schemas.response import APIResponse, ErrorResponse
from idp.services.application_service import application_service

router = APIRouter(responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}})


def _with_secret(app: Application, secret: str) -> ApplicationWithSecret:
    return ApplicationWithSecret(
        **ApplicationResponse.model_validate(app).model_dump(),
        client_secret=secret,
    )


@router.get("/scopes", response_model=List[str])
def list_supported_scopes(
    current_user: User = Depends(get_developer_user)
):
    """Scopes an application may be registered with"""
    return application_service.supported_scopes()


@router.post("", response_model=ApplicationWithSecret, status_code=status.HTTP_201_CREATED)
def create_application(
    data: ApplicationCreate,
    current_user: User = Depends(get_developer_user),
    db: Session = Depends(get_db)
):
    """
    Register a new OAuth client

    Args:
        data: Name, description, redirect URIs and scopes
        current_user: Owner (developer or admin)

    Returns:
        The application including its client secret, shown only this once
    """
    app, secret = application_service.create(db, current_user, data)
    return _with_secret(app, secret)


@router.get("", response_model=List[ApplicationResponse])
def list_applications(
    current_user: User = Depends(get_developer_user),
    db: Session = Depends(get_db)
):
    """
    List applications owned by the current user (admins see all)
    """
    return [
        ApplicationResponse.model_validate(app)
        for app in application_service.list_for_user(db, current_user)
    ]


@router.get("/{app_id}", response_model=ApplicationResponse)
def get_application(
    app_id: str,
    current_user: User = Depends(get_developer_user),
    db: Session = Depends(get_db)
):
    """Get a single application"""
    app = application_service.get_owned(db, app_id, current_user)
    return ApplicationResponse.model_validate(app)


@router.put("/{app_id}", response_model=ApplicationResponse)
def update_application(
    app_id: str,
    data: ApplicationUpdate,
    current_user: User = Depends(get_developer_user),
    db: Session = Depends(get_db)
):
    """
    Update name, description, redirect URIs or scopes

    The client id never changes.
    """
    app = application_service.get_owned(db, app_id, current_user)
    app = application_service.update(db, app, data)
    return ApplicationResponse.model_validate(app)


@router.post("/{app_id}/regenerate-secret", response_model=ApplicationWithSecret)
def regenerate_secret(
    app_id: str,
    current_user: User = Depends(get_developer_user),
    db: Session = Depends(get_db)
):
    """
    Rotate the client secret

    Returns:
        The application with its new secret; the old one stops working immediately
    """
    app = application_service.get_owned(db, app_id, current_user)
    secret = application_service.regenerate_secret(db, app)
    return _with_secret(app, secret)


@router.delete("/{app_id}", response_model=APIResponse, status_code=status.HTTP_200_OK)
def delete_application(
    app_id: str,
    current_user: User = Depends(get_developer_user),
    db: Session = Depends(get_db)
):
    """
    Delete an application with every code, token, consent and log entry
    issued under its client id
    """
    app = application_service.get_owned(db, app_id, current_user)
    client_id = app.client_id
    application_service.delete(db, app)
    return APIResponse(message="Application deleted", data={"client_id": client_id})
