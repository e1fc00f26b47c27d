"""OAuth 2.0 / OpenID Connect endpoints"""

import base64
import logging
from typing import Dict, Optional, Tuple
from urllib.parse import unquote

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse, Response
from prometheus_client import Counter
from sqlalchemy.orm import Session

from idp.api.deps import (
    get_client_context,
    get_client_ip,
    get_current_session,
    get_current_user,
    get_key_manager,
    get_optional_session,
    get_rate_limiter,
    read_form_or_json,
)
from idp.config import settings
from idp.core.database import get_db
from idp.core.exceptions import (
    NO_STORE_HEADERS,
    InvalidRequestError,
    ResourceNotFoundError,
    SlowDownError,
)
from idp.models.session import UserSession
from idp.models.user import User
from idp.schemas.oauth import (
    AuthorizeRequest,
    ClientInfo,
    ConsentRequest,
    ConsentResponse,
    TokenResponse,
    parse_grant,
)
from idp.schemas.response import OAuthErrorResponse
from idp.services.application_service import application_service
from idp.services.key_manager import KeyManager
from idp.services.oauth_service import ClientContext, FlowState, oauth_service
from idp.services.rate_limiter import InMemoryRateLimiter

logger = logging.getLogger(__name__)

router = APIRouter()

TOKENS_ISSUED = Counter(
    "sso_oauth_tokens_issued_total",
    "Access tokens issued by the token endpoint",
    ["grant_type"],
)
RATE_LIMIT_WINDOW_SECONDS = 60


def parse_basic_credentials(header: Optional[str]) -> Optional[Tuple[str, str]]:
    """
    Decode ``Authorization: Basic`` client credentials.

    Both parts are form-urlencoded before base64 per RFC 6749 section 2.3.1.
    Returns None for anything that is not a well-formed Basic header.
    """
    if not header:
        return None
    scheme, _, encoded = header.partition(" ")
    if scheme.lower() != "basic" or not encoded.strip():
        return None
    try:
        decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
    except ValueError:  # non-ASCII input, bad padding, non-UTF-8 payload
        return None
    client_id, sep, client_secret = decoded.partition(":")
    if not sep:
        return None
    return unquote(client_id), unquote(client_secret)


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _enforce_rate_limit(
    limiter: InMemoryRateLimiter,
    endpoint: str,
    client_id: Optional[str],
    ip_address: Optional[str],
    limit: int,
) -> None:
    result = limiter.check(
        limiter.build_key(endpoint, client_id, ip_address),
        limit,
        RATE_LIMIT_WINDOW_SECONDS,
    )
    if not result.allowed:
        logger.warning(f"Rate limit hit on {endpoint} for client={client_id} ip={ip_address}")
        raise SlowDownError(int(result.retry_after) + 1)


@router.get("/authorize")
def authorize(
    params: AuthorizeRequest = Depends(),
    auth: Optional[Tuple[UserSession, User]] = Depends(get_optional_session),
    context: ClientContext = Depends(get_client_context),
    db: Session = Depends(get_db)
):
    """
    Authorization endpoint

    Redirects to the login page, the consent page or straight back to the
    client with a code. Errors detected before the redirect URI is verified
    are returned as JSON.
    """
    result = oauth_service.authorize(db, params, auth, context)
    response = RedirectResponse(result.redirect_url, status_code=status.HTTP_302_FOUND)
    if result.state == FlowState.CONSENT_REQUIRED and result.csrf_token:
        response.set_cookie(
            settings.CSRF_COOKIE_NAME,
            result.csrf_token,
            max_age=settings.AUTHORIZATION_CODE_EXPIRE_MINUTES * 60,
            path="/",
            secure=settings.is_production,
            httponly=False,  # the consent page echoes it back in a header
            samesite="strict",
        )
    return response


@router.post("/authorize/consent", response_model=ConsentResponse)
def consent(
    body: ConsentRequest,
    request: Request,
    auth: Tuple[UserSession, User] = Depends(get_current_session),
    context: ClientContext = Depends(get_client_context),
    db: Session = Depends(get_db)
):
    """
    Consent decision from the interactive consent page

    Args:
        body: Authorization parameters plus the approve flag

    Returns:
        Callback URL for the page to navigate to
    """
    redirect_url = oauth_service.consent(
        db,
        body,
        auth,
        csrf_cookie=request.cookies.get(settings.CSRF_COOKIE_NAME),
        csrf_header=request.headers.get(settings.CSRF_HEADER_NAME),
        context=context,
    )
    response = JSONResponse(
        ConsentResponse(redirectUrl=redirect_url).model_dump(),
        headers=NO_STORE_HEADERS,
    )
    response.delete_cookie(settings.CSRF_COOKIE_NAME, path="/")
    return response


@router.post(
    "/token",
    response_model=TokenResponse,
    responses={400: {"model": OAuthErrorResponse}, 429: {"model": OAuthErrorResponse}},
)
def token(
    request: Request,
    body: Dict[str, str] = Depends(read_form_or_json),
    context: ClientContext = Depends(get_client_context),
    key_manager: KeyManager = Depends(get_key_manager),
    limiter: InMemoryRateLimiter = Depends(get_rate_limiter),
    db: Session = Depends(get_db)
):
    """
    Token endpoint (authorization_code and refresh_token grants)

    Accepts form-encoded or JSON bodies, with client credentials in the body
    or an HTTP Basic header.
    """
    client_id = body.get("client_id") or None
    client_secret = body.get("client_secret") or None
    basic = parse_basic_credentials(request.headers.get("authorization"))
    if basic is not None:
        if not client_id:
            client_id = basic[0]
        if not client_secret and basic[0] == client_id:
            client_secret = basic[1]

    _enforce_rate_limit(
        limiter, "token", client_id, get_client_ip(request), settings.TOKEN_RATE_LIMIT_PER_MINUTE
    )

    client = oauth_service.authenticate_client(
        db,
        client_id,
        client_secret,
        has_code_verifier=bool(body.get("code_verifier")),
    )
    grant = parse_grant(body)
    tokens = oauth_service.token(db, grant, client, key_manager, context)
    TOKENS_ISSUED.labels(grant.grant_type).inc()
    return JSONResponse(tokens.model_dump(exclude_none=True), headers=NO_STORE_HEADERS)


@router.post("/revoke", responses={400: {"model": OAuthErrorResponse}})
def revoke(
    request: Request,
    body: Dict[str, str] = Depends(read_form_or_json),
    context: ClientContext = Depends(get_client_context),
    limiter: InMemoryRateLimiter = Depends(get_rate_limiter),
    db: Session = Depends(get_db)
):
    """
    Token revocation (RFC 7009)

    Unknown tokens are not an error; the response is always an empty 200.
    """
    token_value = body.get("token")
    if not token_value:
        raise InvalidRequestError("token is required")

    client_id = body.get("client_id") or None
    if not client_id:
        basic = parse_basic_credentials(request.headers.get("authorization"))
        client_id = basic[0] if basic else None
    _enforce_rate_limit(
        limiter, "revoke", client_id, get_client_ip(request), settings.REVOKE_RATE_LIMIT_PER_MINUTE
    )

    oauth_service.revoke(db, token_value, context)
    return Response(status_code=status.HTTP_200_OK, headers=NO_STORE_HEADERS)


@router.api_route("/userinfo", methods=["GET", "POST"], responses={401: {"model": OAuthErrorResponse}})
def userinfo(
    request: Request,
    db: Session = Depends(get_db)
):
    """
    OpenID Connect UserInfo

    Returns:
        ``sub`` plus profile/email claims allowed by the token's scope
    """
    claims = oauth_service.userinfo(db, _bearer_token(request))
    return JSONResponse(claims, headers=NO_STORE_HEADERS)


@router.get("/client-info", response_model=ClientInfo)
def client_info(
    client_id: str = Query(..., min_length=1),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Public details of a client for the consent page

    Raises:
        ResourceNotFoundError: Unknown client id
    """
    app = application_service.get_by_client_id(db, client_id)
    if app is None:
        raise ResourceNotFoundError("Application")
    return ClientInfo(
        id=app.id,
        client_id=app.client_id,
        name=app.name,
        description=app.description,
    )
