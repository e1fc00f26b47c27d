"""OAuth 2.0 / OpenID Connect request and response schemas"""

from datetime import datetime
from typing import Dict, Literal, Optional, Type, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from idp.core.exceptions import InvalidRequestError, OAuthError


class AuthorizeRequest(BaseModel):
    """Query parameters of the authorize endpoint"""
    response_type: Optional[str] = None
    client_id: Optional[str] = None
    redirect_uri: Optional[str] = None
    scope: Optional[str] = None
    state: Optional[str] = None
    nonce: Optional[str] = None
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None


class ConsentRequest(BaseModel):
    """Consent page submission; accepts snake_case or camelCase keys"""
    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(..., validation_alias=AliasChoices("client_id", "clientId"))
    redirect_uri: str = Field(..., validation_alias=AliasChoices("redirect_uri", "redirectUri"))
    scope: str = "openid"
    state: Optional[str] = None
    nonce: Optional[str] = None
    code_challenge: Optional[str] = Field(
        None, validation_alias=AliasChoices("code_challenge", "codeChallenge")
    )
    code_challenge_method: Optional[str] = Field(
        None, validation_alias=AliasChoices("code_challenge_method", "codeChallengeMethod")
    )
    approve: bool = False


class ConsentResponse(BaseModel):
    success: bool = True
    redirectUrl: str


# Token endpoint grants. Each grant type is its own model carrying its
# required fields; the endpoint resolves the model once from grant_type.

class AuthorizationCodeGrant(BaseModel):
    grant_type: Literal["authorization_code"]
    code: str = Field(..., min_length=1)
    redirect_uri: str = Field(..., min_length=1)
    code_verifier: Optional[str] = None
    nonce: Optional[str] = None


class RefreshTokenGrant(BaseModel):
    grant_type: Literal["refresh_token"]
    refresh_token: str = Field(..., min_length=1)


Grant = Union[AuthorizationCodeGrant, RefreshTokenGrant]

GRANT_TYPES: Dict[str, Type[BaseModel]] = {
    "authorization_code": AuthorizationCodeGrant,
    "refresh_token": RefreshTokenGrant,
}


def parse_grant(body: Dict[str, str]) -> Grant:
    """
    Resolve the grant model for ``body['grant_type']`` and validate its fields.

    Raises:
        OAuthError: unsupported_grant_type, or invalid_request naming the
            first missing field
    """
    grant_type = body.get("grant_type")
    model = GRANT_TYPES.get(grant_type or "")
    if model is None:
        raise OAuthError("unsupported_grant_type", f"Grant type '{grant_type}' is not supported")
    try:
        return model.model_validate(body)
    except PydanticValidationError as exc:
        field = ".".join(str(loc) for loc in exc.errors()[0]["loc"])
        raise InvalidRequestError(f"{field} is required") from None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    scope: str
    refresh_token: Optional[str] = None
    id_token: Optional[str] = None


class ClientInfo(BaseModel):
    """Public metadata shown on the consent page"""
    id: str
    client_id: str
    name: str
    description: Optional[str] = None


class ConsentedApplication(BaseModel):
    client_id: str
    app_name: str
    app_description: Optional[str] = None
    scope: str
    created_at: datetime
    owner_username: str


class RevokeConsentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    client_id: str = Field(..., validation_alias=AliasChoices("client_id", "clientId"))
