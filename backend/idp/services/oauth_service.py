"""
OAuth 2.0 authorization code flow with PKCE and OpenID Connect.

Flow states:
  REQUESTED -> (LOGIN_REQUIRED) -> CONSENT_REQUIRED -> CODE_ISSUED
  -> EXCHANGED -> (REFRESHABLE)
Terminal: DENIED, EXPIRED, REVOKED.

Validation order on authorize matters: until the redirect URI has been
matched against the client's registration, errors are returned directly and
never redirected, so an attacker-supplied redirect_uri cannot be used as an
open redirect. Afterwards errors travel back to the client's callback.

Credential failures at the token endpoint share one error description per
grant so callers cannot tell why an exchange failed; the specific reason is
only logged.
"""

from __future__ import annotations

import hmac
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from sqlalchemy.orm import Session

from idp.config import settings
from idp.core.exceptions import (
    AuthorizationError,
    InvalidClientError,
    InvalidGrantError,
    InvalidRequestError,
    InvalidTokenError,
    OAuthError,
    OAuthRedirectError,
)
from idp.core.security import (
    PKCE_METHODS,
    generate_csrf_token,
    generate_state,
    verify_code_challenge,
)
from idp.models.application import Application
from idp.models.session import UserSession
from idp.models.user import User
from idp.schemas.oauth import (
    AuthorizationCodeGrant,
    AuthorizeRequest,
    ConsentRequest,
    Grant,
    RefreshTokenGrant,
    TokenResponse,
)
from idp.services.application_service import (
    application_service,
    disallowed_scopes,
    redirect_uri_matches,
    split_scope,
)
from idp.services.audit_service import audit_service
from idp.services.consent_service import consent_service
from idp.services.key_manager import KeyManager
from idp.services.token_service import CodeBinding, token_service
from idp.services.user_service import user_service

logger = logging.getLogger(__name__)

AUTHORIZE_PATH = "/api/v1/oauth/authorize"
TOKEN_PATH = "/api/v1/oauth/token"
USERINFO_PATH = "/api/v1/oauth/userinfo"
REVOKE_PATH = "/api/v1/oauth/revoke"
JWKS_PATH = "/.well-known/jwks.json"

OFFLINE_ACCESS = "offline_access"
DEFAULT_SCOPE = "openid"


class FlowState(str, Enum):
    REQUESTED = "requested"
    LOGIN_REQUIRED = "login_required"
    CONSENT_REQUIRED = "consent_required"
    CODE_ISSUED = "code_issued"
    EXCHANGED = "exchanged"
    REFRESHABLE = "refreshable"
    DENIED = "denied"
    EXPIRED = "expired"
    REVOKED = "revoked"


@dataclass
class AuthorizeResult:
    state: FlowState
    redirect_url: str
    csrf_token: Optional[str] = None


@dataclass
class ClientContext:
    """Caller metadata recorded in the auth log."""
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


def build_redirect_url(base: str, params: Dict[str, Optional[str]]) -> str:
    """Append non-empty ``params`` to ``base``, keeping its existing query."""
    parts = urlsplit(base)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((key, value) for key, value in params.items() if value)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), ""))


def _profile_claims(user: User, scopes: List[str]) -> Dict[str, Any]:
    claims: Dict[str, Any] = {}
    if "profile" in scopes:
        claims["name"] = user.display_name
        claims["preferred_username"] = user.username
    if "email" in scopes:
        claims["email"] = user.email
        claims["email_verified"] = True
    return claims


class OAuthService:
    """Authorization state machine: authorize, consent, token, refresh, revoke."""

    # Shared validation

    @staticmethod
    def _resolve_client(db: Session, client_id: Optional[str]) -> Application:
        app = application_service.get_by_client_id(db, client_id)
        if app is None:
            raise InvalidClientError("Client not found")
        return app

    @staticmethod
    def _check_redirect_uri(app: Application, redirect_uri: Optional[str]) -> str:
        if not redirect_uri:
            raise InvalidRequestError("redirect_uri is required")
        if not redirect_uri_matches(app.redirect_uris, redirect_uri):
            raise InvalidRequestError("Invalid redirect_uri")
        return redirect_uri

    @staticmethod
    def _scope_error(app: Application, scope: str) -> Optional[str]:
        rejected = disallowed_scopes(app.scopes, split_scope(scope))
        if rejected:
            return f"Scope '{rejected[0]}' is not allowed"
        return None

    @staticmethod
    def _pkce_method(code_challenge: Optional[str], method: Optional[str]) -> Optional[str]:
        """Effective PKCE method; ``plain`` when a challenge comes without one."""
        if not code_challenge:
            return None
        method = method or "plain"
        return method if method in PKCE_METHODS else ""

    # Authorize

    def authorize(
        self,
        db: Session,
        params: AuthorizeRequest,
        auth: Optional[Tuple[UserSession, User]],
        context: Optional[ClientContext] = None,
    ) -> AuthorizeResult:
        """
        Decide the next step of an authorization request.

        Raises:
            OAuthError: before the redirect URI is trusted (rendered as JSON)
            OAuthRedirectError: afterwards (rendered as a redirect to the client)
        """
        if params.response_type != "code":
            raise OAuthError("unsupported_response_type", "Only code response type is supported")
        if not params.client_id:
            raise InvalidClientError("client_id is required")

        app = self._resolve_client(db, params.client_id)
        redirect_uri = self._check_redirect_uri(app, params.redirect_uri)

        # Redirect URI is trusted from here on
        scope = params.scope or DEFAULT_SCOPE
        scope_error = self._scope_error(app, scope)
        if scope_error:
            raise OAuthRedirectError("invalid_scope", scope_error, redirect_uri, params.state)

        method = self._pkce_method(params.code_challenge, params.code_challenge_method)
        if method == "":
            raise OAuthRedirectError(
                "invalid_request",
                "Unsupported code_challenge_method",
                redirect_uri,
                params.state,
            )

        state = params.state
        if auth is None:
            continuation = params.model_dump(exclude_none=True)
            continuation["scope"] = scope
            continuation["state"] = state or generate_state()
            return_url = f"{settings.issuer}{AUTHORIZE_PATH}?{urlencode(continuation)}"
            login_url = build_redirect_url(
                settings.frontend_url(settings.LOGIN_PAGE_PATH), {"returnUrl": return_url}
            )
            logger.info(f"Authorize for {app.client_id}: login required")
            return AuthorizeResult(FlowState.LOGIN_REQUIRED, login_url)

        session, user = auth
        if consent_service.covers(db, user.id, app.client_id, scope):
            code = token_service.create_authorization_code(
                db,
                client_id=app.client_id,
                user_id=user.id,
                redirect_uri=redirect_uri,
                scope=scope,
                nonce=params.nonce,
                code_challenge=params.code_challenge,
                code_challenge_method=method,
                auth_time=session.created_at,
            )
            self._audit(db, user.id, app.client_id, "authorize", context)
            logger.info(f"Authorize for {app.client_id}: consent on file, code issued to {user.id}")
            return AuthorizeResult(
                FlowState.CODE_ISSUED,
                build_redirect_url(redirect_uri, {"code": code, "state": state}),
            )

        csrf_token = None
        if settings.OAUTH_HARDENED_CONSENT:
            state = state or generate_state()
            csrf_token = generate_csrf_token()

        consent_url = build_redirect_url(
            settings.frontend_url(settings.CONSENT_PAGE_PATH),
            {
                "client_id": app.client_id,
                "redirect_uri": redirect_uri,
                "scope": scope,
                "state": state,
                "nonce": params.nonce,
                "code_challenge": params.code_challenge,
                "code_challenge_method": method,
            },
        )
        return AuthorizeResult(FlowState.CONSENT_REQUIRED, consent_url, csrf_token)

    # Consent

    def consent(
        self,
        db: Session,
        body: ConsentRequest,
        auth: Tuple[UserSession, User],
        *,
        csrf_cookie: Optional[str] = None,
        csrf_header: Optional[str] = None,
        context: Optional[ClientContext] = None,
    ) -> str:
        """
        Record the user's decision and return the callback URL to navigate to.
        """
        if settings.OAUTH_HARDENED_CONSENT:
            if not csrf_cookie or not csrf_header or not hmac.compare_digest(
                csrf_cookie.encode("utf-8"), csrf_header.encode("utf-8")
            ):
                raise AuthorizationError("Invalid CSRF token")
            if not body.state:
                raise InvalidRequestError("state is required")

        app = self._resolve_client(db, body.client_id)
        redirect_uri = self._check_redirect_uri(app, body.redirect_uri)

        if not body.approve:
            logger.info(f"User {auth[1].id} denied access for {app.client_id}")
            return build_redirect_url(
                redirect_uri,
                {
                    "error": "access_denied",
                    "error_description": "User denied the authorization request",
                    "state": body.state,
                },
            )

        scope = body.scope or DEFAULT_SCOPE
        scope_error = self._scope_error(app, scope)
        method = self._pkce_method(body.code_challenge, body.code_challenge_method)
        if scope_error or method == "":
            return build_redirect_url(
                redirect_uri,
                {
                    "error": "invalid_scope" if scope_error else "invalid_request",
                    "error_description": scope_error or "Unsupported code_challenge_method",
                    "state": body.state,
                },
            )

        session, user = auth
        consent_service.save(db, user_id=user.id, client_id=app.client_id, scope=scope)
        self._audit(db, user.id, app.client_id, "consent", context)
        code = token_service.create_authorization_code(
            db,
            client_id=app.client_id,
            user_id=user.id,
            redirect_uri=redirect_uri,
            scope=scope,
            nonce=body.nonce,
            code_challenge=body.code_challenge,
            code_challenge_method=method,
            auth_time=session.created_at,
        )
        return build_redirect_url(redirect_uri, {"code": code, "state": body.state})

    # Token endpoint

    def authenticate_client(
        self,
        db: Session,
        client_id: Optional[str],
        client_secret: Optional[str],
        *,
        has_code_verifier: bool,
    ) -> Application:
        """
        Client authentication ahead of grant dispatch.

        A request carrying a PKCE code_verifier is treated as a public client
        and skips the secret check; otherwise a supplied secret must match.
        """
        if not client_id:
            raise InvalidClientError("client_id is required")
        app = self._resolve_client(db, client_id)
        if not has_code_verifier and client_secret:
            if not application_service.verify_secret(app, client_secret):
                logger.warning(f"Client secret mismatch for {client_id}")
                raise InvalidClientError("Invalid client_secret")
        return app

    def token(
        self,
        db: Session,
        grant: Grant,
        client: Application,
        key_manager: KeyManager,
        context: Optional[ClientContext] = None,
    ) -> TokenResponse:
        handler = self._GRANT_HANDLERS[type(grant)]
        return handler(self, db, grant, client, key_manager, context)

    def _exchange_code(
        self,
        db: Session,
        grant: AuthorizationCodeGrant,
        client: Application,
        key_manager: KeyManager,
        context: Optional[ClientContext],
    ) -> TokenResponse:
        binding = token_service.consume_authorization_code(db, grant.code)
        reason = self._code_rejection(binding, grant, client)
        if reason:
            logger.warning(f"Authorization code rejected for {client.client_id}: {reason}")
            raise InvalidGrantError("Invalid authorization code")

        # Resolve the resource owner before anything is minted
        user = user_service.get_user_by_id(db, binding.user_id)
        if user is None or not user.is_active:
            logger.warning(f"Authorization code rejected for {client.client_id}: user unavailable")
            raise InvalidGrantError("Invalid authorization code")

        scopes = split_scope(binding.scope)
        try:
            access = token_service.create_access_token(
                db, client_id=client.client_id, user_id=user.id, scope=binding.scope
            )
            refresh_token = None
            if OFFLINE_ACCESS in scopes:
                refresh_token = token_service.create_refresh_token(db, access_token_id=access.id).token

            id_token = None
            if "openid" in scopes:
                id_token = self._id_token(
                    key_manager,
                    user=user,
                    client_id=client.client_id,
                    scopes=scopes,
                    nonce=binding.nonce or grant.nonce,
                    auth_time=binding.auth_time,
                )
            db.commit()
        except Exception:
            db.rollback()
            raise

        self._audit(db, user.id, client.client_id, "token", context)
        return TokenResponse(
            access_token=access.token,
            expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            scope=binding.scope,
            refresh_token=refresh_token,
            id_token=id_token,
        )

    @staticmethod
    def _code_rejection(
        binding: Optional[CodeBinding],
        grant: AuthorizationCodeGrant,
        client: Application,
    ) -> Optional[str]:
        if binding is None:
            return "unknown or already redeemed"
        if binding.expired:
            return "expired"
        if binding.client_id != client.client_id:
            return "issued to another client"
        if binding.redirect_uri != grant.redirect_uri:
            return "redirect_uri differs from authorize request"
        if binding.code_challenge:
            if not grant.code_verifier:
                return "code_verifier missing"
            if not verify_code_challenge(
                grant.code_verifier,
                binding.code_challenge,
                binding.code_challenge_method or "plain",
            ):
                return "PKCE verification failed"
        return None

    def _refresh(
        self,
        db: Session,
        grant: RefreshTokenGrant,
        client: Application,
        key_manager: KeyManager,
        context: Optional[ClientContext],
    ) -> TokenResponse:
        found = token_service.get_valid_refresh_token(db, grant.refresh_token)
        if found is None:
            logger.warning(f"Refresh token rejected for {client.client_id}: unknown or expired")
            raise InvalidGrantError("Invalid refresh token")
        _, previous = found
        if previous.client_id != client.client_id:
            logger.warning(f"Refresh token rejected for {client.client_id}: issued to another client")
            raise InvalidGrantError("Invalid refresh token")

        previous_id = previous.id
        client_id, user_id, scope = previous.client_id, previous.user_id, previous.scope
        scopes = split_scope(scope)
        try:
            refresh_token = None
            if OFFLINE_ACCESS in scopes:
                # Rotation: the presented token must still exist when we delete it
                if not token_service.consume_refresh_token(db, grant.refresh_token):
                    raise InvalidGrantError("Invalid refresh token")
            access = token_service.create_access_token(
                db, client_id=client_id, user_id=user_id, scope=scope
            )
            if OFFLINE_ACCESS in scopes:
                refresh_token = token_service.create_refresh_token(db, access_token_id=access.id).token
            if settings.OAUTH_REVOKE_SUPERSEDED_ACCESS_TOKEN:
                token_service.delete_access_token(db, previous_id)
            db.commit()
        except Exception:
            db.rollback()
            raise

        return TokenResponse(
            access_token=access.token,
            expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            scope=scope,
            refresh_token=refresh_token,
        )

    _GRANT_HANDLERS = {
        AuthorizationCodeGrant: _exchange_code,
        RefreshTokenGrant: _refresh,
    }

    @staticmethod
    def _id_token(
        key_manager: KeyManager,
        *,
        user: User,
        client_id: str,
        scopes: List[str],
        nonce: Optional[str],
        auth_time: Optional[datetime],
    ) -> str:
        now = int(time.time())
        claims: Dict[str, Any] = {
            "iss": settings.issuer,
            "sub": user.id,
            "aud": client_id,
            "exp": now + settings.ID_TOKEN_EXPIRE_MINUTES * 60,
            "iat": now,
            "auth_time": _epoch(auth_time) if auth_time else now,
        }
        if nonce:
            claims["nonce"] = nonce
        claims.update(_profile_claims(user, scopes))
        return key_manager.sign(claims)

    # Revocation / userinfo

    def revoke(self, db: Session, token: str, context: Optional[ClientContext] = None) -> None:
        """RFC 7009: succeeds whether or not ``token`` exists."""
        owner = token_service.find_token_owner(db, token)
        kind = token_service.revoke_token(db, token)
        if kind and owner:
            self._audit(db, owner[0], owner[1], "revoke", context)
        logger.info(f"Revocation request processed (matched={kind or 'none'})")

    def userinfo(self, db: Session, bearer: Optional[str]) -> Dict[str, Any]:
        if not bearer:
            raise InvalidTokenError("Missing or invalid access token")
        access = token_service.get_valid_access_token(db, bearer)
        if access is None:
            raise InvalidTokenError()
        user = user_service.get_user_by_id(db, access.user_id)
        if user is None or not user.is_active:
            raise InvalidTokenError()
        claims: Dict[str, Any] = {"sub": user.id}
        claims.update(_profile_claims(user, split_scope(access.scope)))
        return claims

    @staticmethod
    def _audit(
        db: Session,
        user_id: str,
        client_id: str,
        action: str,
        context: Optional[ClientContext],
    ) -> None:
        context = context or ClientContext()
        audit_service.log_event(
            db,
            user_id=user_id,
            client_id=client_id,
            action=action,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
        )


def _epoch(value: datetime) -> int:
    # Stored timestamps are naive UTC
    return int((value.replace(tzinfo=None) - datetime(1970, 1, 1)).total_seconds())


def discovery_document() -> Dict[str, Any]:
    issuer = settings.issuer
    return {
        "issuer": issuer,
        "authorization_endpoint": f"{issuer}{AUTHORIZE_PATH}",
        "token_endpoint": f"{issuer}{TOKEN_PATH}",
        "userinfo_endpoint": f"{issuer}{USERINFO_PATH}",
        "revocation_endpoint": f"{issuer}{REVOKE_PATH}",
        "jwks_uri": f"{issuer}{JWKS_PATH}",
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "subject_types_supported": ["public"],
        "id_token_signing_alg_values_supported": ["RS256"],
        "scopes_supported": list(settings.OAUTH_SUPPORTED_SCOPES),
        "token_endpoint_auth_methods_supported": ["client_secret_basic", "client_secret_post", "none"],
        "claims_supported": [
            "sub", "iss", "aud", "exp", "iat", "auth_time", "nonce",
            "name", "preferred_username", "email", "email_verified",
        ],
        "code_challenge_methods_supported": list(PKCE_METHODS),
    }


oauth_service = OAuthService()
