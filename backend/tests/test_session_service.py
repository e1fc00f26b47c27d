from datetime import datetime, timedelta

import pytest

from idp.core.exceptions import AccountLockedError, InvalidCredentialsError
from idp.models.session import UserSession
from idp.services.session_service import session_service
from idp.services.user_service import user_service

from conftest import PASSWORD


def test_login_drops_every_earlier_session(db, make_user):
    user = make_user()
    first = session_service.login(db, user, ip_address="10.0.0.1")
    second = session_service.login(db, user, ip_address="10.0.0.2")

    assert first.token != second.token
    assert session_service.validate(db, first.token) is None
    session, resolved = session_service.validate(db, second.token)
    assert resolved.id == user.id
    assert db.query(UserSession).filter(UserSession.user_id == user.id).count() == 1


def test_login_leaves_other_users_sessions_alone(db, make_user):
    alice = make_user()
    bob = make_user(username="bob")
    bob_session = session_service.login(db, bob)
    session_service.login(db, alice)

    assert session_service.validate(db, bob_session.token) is not None


def test_expired_or_inactive_sessions_do_not_validate(db, make_user):
    user = make_user()
    session = session_service.login(db, user)
    session.expires_at = datetime.utcnow() - timedelta(seconds=1)
    db.commit()
    assert session_service.validate(db, session.token) is None
    assert session_service.purge_expired(db) == 1

    inactive = make_user(username="ghost", is_active=False)
    ghost_session = session_service.login(db, inactive)
    assert session_service.validate(db, ghost_session.token) is None
    assert session_service.validate(db, None) is None


def test_logout_removes_session(db, make_user):
    session = session_service.login(db, make_user())
    assert session_service.logout(db, session.id)
    assert not session_service.logout(db, session.id)


def test_authenticate_by_username_or_email(db, make_user):
    user = make_user(email="alice@example.com")
    assert user_service.authenticate_user(db, "alice", PASSWORD).id == user.id
    assert user_service.authenticate_user(db, "alice@example.com", PASSWORD).id == user.id
    with pytest.raises(InvalidCredentialsError):
        user_service.authenticate_user(db, "nobody", PASSWORD)


def test_repeated_failures_lock_the_account(db, make_user):
    make_user()
    for _ in range(4):
        with pytest.raises(InvalidCredentialsError):
            user_service.authenticate_user(db, "alice", "wrong-password")
    with pytest.raises(AccountLockedError):
        user_service.authenticate_user(db, "alice", "wrong-password")
    with pytest.raises(AccountLockedError):
        user_service.authenticate_user(db, "alice", PASSWORD)
