import pytest
from pydantic import ValidationError

from idp.core.exceptions import AuthorizationError, ResourceNotFoundError
from idp.models.audit import AuthLog
from idp.models.oauth import AccessToken, AuthorizationCode, RefreshToken, UserConsent
from idp.schemas.application import ApplicationCreate, ApplicationUpdate
from idp.services.application_service import (
    application_service,
    disallowed_scopes,
    redirect_uri_matches,
    split_scope,
)
from idp.services.audit_service import audit_service
from idp.services.consent_service import consent_service
from idp.services.token_service import token_service


def test_redirect_uri_matches_on_origin_and_path():
    registered = ["https://app.example/cb"]
    assert redirect_uri_matches(registered, "https://app.example/cb")
    assert redirect_uri_matches(registered, "https://app.example/cb?x=1")
    assert redirect_uri_matches(registered, "HTTPS://APP.EXAMPLE/cb")
    assert not redirect_uri_matches(registered, "https://app.example/cb/extra")
    assert not redirect_uri_matches(registered, "https://evil.example/cb")
    assert not redirect_uri_matches(registered, "https://app.example:8443/cb")
    assert not redirect_uri_matches(registered, "http://app.example/cb")
    assert not redirect_uri_matches(registered, "")


def test_non_url_registrations_fall_back_to_prefix():
    registered = ["com.example.app:/oauth"]
    assert redirect_uri_matches(registered, "com.example.app:/oauth/callback")
    assert not redirect_uri_matches(registered, "com.other.app:/oauth")


def test_scope_helpers():
    assert split_scope("openid  profile ") == ["openid", "profile"]
    assert split_scope(None) == []
    assert disallowed_scopes(["openid", "profile"], ["openid", "email", "admin"]) == ["email", "admin"]
    assert disallowed_scopes(["openid"], []) == []


def test_create_rejects_unsupported_scopes_and_fragments():
    with pytest.raises(ValidationError):
        ApplicationCreate(name="x", redirect_uris=["https://a.example/cb"], scopes=["openid", "admin"])
    with pytest.raises(ValidationError):
        ApplicationCreate(name="x", redirect_uris=["https://a.example/cb#frag"])
    with pytest.raises(ValidationError):
        ApplicationCreate(name="x", redirect_uris=["   "])


def test_create_returns_secret_once_and_stores_mac(db, make_app):
    app, secret = make_app()

    assert app.client_id.startswith("sso_")
    assert app.client_secret_hash != secret
    assert application_service.verify_secret(app, secret)
    assert app.redirect_uris == ["https://app.example/cb"]
    assert app.scopes == ["openid", "profile"]


def test_regenerate_secret_invalidates_previous(db, make_app):
    app, old_secret = make_app()
    client_id = app.client_id

    new_secret = application_service.regenerate_secret(db, app)

    assert new_secret != old_secret
    assert not application_service.verify_secret(app, old_secret)
    assert application_service.verify_secret(app, new_secret)
    assert app.client_id == client_id


def test_update_keeps_client_id(db, make_app):
    app, _ = make_app()
    client_id = app.client_id

    updated = application_service.update(
        db, app, ApplicationUpdate(name="Renamed", scopes=["openid", "email"])
    )

    assert updated.name == "Renamed"
    assert updated.scopes == ["openid", "email"]
    assert updated.redirect_uris == ["https://app.example/cb"]
    assert updated.client_id == client_id


def test_get_owned_enforces_ownership(db, make_app, make_user):
    app, _ = make_app()
    stranger = make_user(username="mallory", role="developer")
    admin = make_user(username="root", role="admin")

    with pytest.raises(AuthorizationError):
        application_service.get_owned(db, app.id, stranger)
    assert application_service.get_owned(db, app.id, admin).id == app.id
    with pytest.raises(ResourceNotFoundError):
        application_service.get_owned(db, "missing", admin)


def test_list_for_user_scopes_to_owner_unless_admin(db, make_app, make_user):
    owner = make_user(username="devon", role="developer")
    other = make_user(username="dana", role="developer")
    admin = make_user(username="root", role="admin")
    make_app(owner=owner, name="Mine")
    make_app(owner=other, name="Theirs")

    assert [a.name for a in application_service.list_for_user(db, owner)] == ["Mine"]
    assert len(application_service.list_for_user(db, admin)) == 2


def test_delete_cascades_every_grant(db, make_app, make_user):
    app, _ = make_app()
    other_app, _ = make_app(owner=app.owner, name="Other")
    user = make_user()

    for client in (app, other_app):
        consent_service.save(db, user_id=user.id, client_id=client.client_id, scope="openid")
        access = token_service.create_access_token(
            db, client_id=client.client_id, user_id=user.id, scope="openid offline_access"
        )
        token_service.create_refresh_token(db, access_token_id=access.id)
        db.commit()
        token_service.create_authorization_code(
            db,
            client_id=client.client_id,
            user_id=user.id,
            redirect_uri="https://app.example/cb",
            scope="openid",
        )
        audit_service.log_event(db, user_id=user.id, client_id=client.client_id, action="token")

    client_id = app.client_id
    application_service.delete(db, app)

    assert application_service.get_by_client_id(db, client_id) is None
    for model in (UserConsent, AccessToken, AuthorizationCode, AuthLog):
        assert db.query(model).filter(model.client_id == client_id).count() == 0
        assert db.query(model).filter(model.client_id == other_app.client_id).count() == 1
    assert db.query(RefreshToken).count() == 1
