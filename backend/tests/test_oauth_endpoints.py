from jose import jwt

from idp.config import settings

from conftest import REDIRECT_URI, login, query_of

AUTHORIZE = "/api/v1/oauth/authorize"
CONSENT = "/api/v1/oauth/authorize/consent"
TOKEN = "/api/v1/oauth/token"
REVOKE = "/api/v1/oauth/revoke"
USERINFO = "/api/v1/oauth/userinfo"


def _authorize_params(app, **overrides):
    params = {
        "response_type": "code",
        "client_id": app.client_id,
        "redirect_uri": REDIRECT_URI,
        "scope": "openid profile",
        "state": "abc123",
    }
    params.update(overrides)
    return params


def _obtain_code(client, app, **overrides):
    response = client.get(AUTHORIZE, params=_authorize_params(app, **overrides))
    assert response.status_code == 302, response.text
    consent_params = query_of(response.headers["location"])
    response = client.post(
        CONSENT,
        json={**consent_params, "approve": True},
        headers={settings.CSRF_HEADER_NAME: client.cookies.get(settings.CSRF_COOKIE_NAME)},
    )
    assert response.status_code == 200, response.text
    return query_of(response.json()["redirectUrl"])["code"]


def test_authorization_code_flow_end_to_end(client, make_user, make_app, key_manager):
    make_user()
    app, secret = make_app(scopes=["openid", "profile"])
    login(client)

    response = client.get(AUTHORIZE, params=_authorize_params(app))
    assert response.status_code == 302
    location = response.headers["location"]
    assert location.startswith(settings.frontend_url(settings.CONSENT_PAGE_PATH) + "?")
    csrf = client.cookies.get(settings.CSRF_COOKIE_NAME)
    assert csrf

    response = client.post(
        CONSENT,
        json={**query_of(location), "approve": True},
        headers={settings.CSRF_HEADER_NAME: csrf},
    )
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    redirect_url = body["redirectUrl"]
    assert redirect_url.startswith(REDIRECT_URI + "?code=")
    params = query_of(redirect_url)
    assert params["state"] == "abc123"

    response = client.post(
        TOKEN,
        data={
            "grant_type": "authorization_code",
            "code": params["code"],
            "redirect_uri": REDIRECT_URI,
            "client_id": app.client_id,
            "client_secret": secret,
        },
    )
    assert response.status_code == 200, response.text
    assert response.headers["cache-control"] == "no-store"
    assert response.headers["pragma"] == "no-cache"
    tokens = response.json()
    assert tokens["token_type"] == "Bearer"
    assert tokens["access_token"]
    assert tokens["id_token"]
    assert "refresh_token" not in tokens
    claims = jwt.decode(
        tokens["id_token"], key_manager.jwks(), algorithms=["RS256"], audience=app.client_id
    )
    assert claims["iss"] == settings.issuer

    # Consent is on file now, so the next authorize goes straight back to the client
    response = client.get(AUTHORIZE, params=_authorize_params(app, state="again"))
    assert response.status_code == 302
    assert response.headers["location"].startswith(REDIRECT_URI + "?code=")

    response = client.get(USERINFO, headers={"Authorization": f"Bearer {tokens['access_token']}"})
    assert response.status_code == 200
    assert response.json()["preferred_username"] == "alice"


def test_public_client_with_basic_auth_and_pkce(client, make_user, make_app):
    make_user()
    app, secret = make_app(scopes=["openid", "offline_access"])
    login(client)
    verifier = "x" * 64
    code = _obtain_code(
        client,
        app,
        scope="openid offline_access",
        code_challenge=verifier,
        code_challenge_method="plain",
    )

    response = client.post(
        TOKEN,
        json={
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": REDIRECT_URI,
            "client_id": app.client_id,
            "code_verifier": verifier,
        },
    )
    assert response.status_code == 200, response.text
    refresh_token = response.json()["refresh_token"]

    response = client.post(
        TOKEN,
        data={"grant_type": "refresh_token", "refresh_token": refresh_token},
        auth=(app.client_id, secret),
    )
    assert response.status_code == 200, response.text
    assert response.json()["refresh_token"] != refresh_token


def test_token_endpoint_errors(client, make_app):
    app, secret = make_app()

    response = client.post(TOKEN, data={"grant_type": "authorization_code", "code": "c"})
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_client"
    assert response.headers["cache-control"] == "no-store"

    response = client.post(
        TOKEN,
        data={"grant_type": "password", "client_id": app.client_id, "client_secret": secret},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "unsupported_grant_type"

    response = client.post(
        TOKEN,
        data={"grant_type": "authorization_code", "client_id": app.client_id, "redirect_uri": REDIRECT_URI},
    )
    assert response.status_code == 400
    assert response.json() == {"error": "invalid_request", "error_description": "code is required"}

    response = client.post(
        TOKEN,
        data={
            "grant_type": "authorization_code",
            "client_id": app.client_id,
            "client_secret": "wrong",
            "code": "c",
            "redirect_uri": REDIRECT_URI,
        },
    )
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_client"

    response = client.post(
        TOKEN,
        data={
            "grant_type": "authorization_code",
            "client_id": app.client_id,
            "code": "never-issued",
            "redirect_uri": REDIRECT_URI,
        },
    )
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_grant"


def test_malformed_basic_header_is_an_oauth_error(client, make_app):
    make_app()
    for header in (b"Basic \xe9\xe9\xe9\xe9", b"Basic not-base64!", b"Basic //79"):
        response = client.post(
            TOKEN,
            data={"grant_type": "authorization_code", "code": "c", "redirect_uri": REDIRECT_URI},
            headers={"Authorization": header},
        )
        assert response.status_code == 400, header
        assert response.json()["error"] == "invalid_client"
        assert response.headers["cache-control"] == "no-store"

    response = client.post(
        REVOKE, data={"token": "unknown-token"}, headers={"Authorization": b"Basic \xe9\xe9\xe9\xe9"}
    )
    assert response.status_code == 200


def test_token_endpoint_rate_limit_returns_slow_down(client, make_app, monkeypatch):
    monkeypatch.setattr(settings, "TOKEN_RATE_LIMIT_PER_MINUTE", 2)
    app, _ = make_app()
    payload = {"grant_type": "refresh_token", "refresh_token": "nope", "client_id": app.client_id}

    for _ in range(2):
        assert client.post(TOKEN, data=payload).json()["error"] == "invalid_grant"

    response = client.post(TOKEN, data=payload)
    assert response.status_code == 429
    assert response.json()["error"] == "slow_down"
    assert response.headers["cache-control"] == "no-store"
    assert int(response.headers["retry-after"]) >= 1

    # a different client is counted separately
    other, _ = make_app(owner=app.owner, name="Other")
    payload["client_id"] = other.client_id
    assert client.post(TOKEN, data=payload).status_code == 400


def test_authorize_with_unregistered_redirect_uri_never_redirects(client, make_user, make_app):
    make_user()
    app, _ = make_app()
    login(client)

    response = client.get(AUTHORIZE, params=_authorize_params(app, redirect_uri="https://evil.example/cb"))
    assert response.status_code == 400
    assert "location" not in response.headers
    assert response.json()["error"] == "invalid_request"

    response = client.get(AUTHORIZE, params=_authorize_params(app, client_id="sso_missing"))
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_client"


def test_authorize_invalid_scope_redirects_to_client(client, make_user, make_app):
    make_user()
    app, _ = make_app(scopes=["openid"])
    login(client)

    response = client.get(AUTHORIZE, params=_authorize_params(app, scope="openid email"))
    assert response.status_code == 302
    location = response.headers["location"]
    assert location.startswith(REDIRECT_URI + "?")
    params = query_of(location)
    assert params["error"] == "invalid_scope"
    assert params["state"] == "abc123"


def test_authorize_without_login_redirects_to_login_page(client, make_app):
    app, _ = make_app()
    response = client.get(AUTHORIZE, params=_authorize_params(app))
    assert response.status_code == 302
    location = response.headers["location"]
    assert location.startswith(settings.frontend_url(settings.LOGIN_PAGE_PATH) + "?returnUrl=")


def test_consent_requires_csrf_header(client, make_user, make_app):
    make_user()
    app, _ = make_app()
    login(client)
    response = client.get(AUTHORIZE, params=_authorize_params(app))
    consent_params = query_of(response.headers["location"])

    response = client.post(CONSENT, json={**consent_params, "approve": True})
    assert response.status_code == 403

    response = client.post(
        CONSENT,
        json={**consent_params, "approve": True},
        headers={settings.CSRF_HEADER_NAME: "forged"},
    )
    assert response.status_code == 403


def test_consent_requires_login(client, make_app):
    app, _ = make_app()
    response = client.post(
        CONSENT, json={"client_id": app.client_id, "redirect_uri": REDIRECT_URI, "approve": True}
    )
    assert response.status_code == 401


def test_consent_accepts_camel_case_and_deny(client, make_user, make_app):
    make_user()
    app, _ = make_app()
    login(client)
    client.get(AUTHORIZE, params=_authorize_params(app))

    response = client.post(
        CONSENT,
        json={"clientId": app.client_id, "redirectUri": REDIRECT_URI, "state": "s1", "approve": False},
        headers={settings.CSRF_HEADER_NAME: client.cookies.get(settings.CSRF_COOKIE_NAME)},
    )
    assert response.status_code == 200
    params = query_of(response.json()["redirectUrl"])
    assert params["error"] == "access_denied"
    assert params["state"] == "s1"


def test_revoke_endpoint(client, make_user, make_app):
    make_user()
    app, secret = make_app()
    login(client)
    code = _obtain_code(client, app)
    access_token = client.post(
        TOKEN,
        data={"grant_type": "authorization_code", "code": code, "redirect_uri": REDIRECT_URI},
        auth=(app.client_id, secret),
    ).json()["access_token"]

    response = client.post(REVOKE, data={})
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_request"

    response = client.post(REVOKE, data={"token": "unknown-token"})
    assert response.status_code == 200
    assert response.content == b""

    response = client.post(REVOKE, data={"token": access_token})
    assert response.status_code == 200
    assert response.content == b""

    response = client.post(USERINFO, headers={"Authorization": f"Bearer {access_token}"})
    assert response.status_code == 401
    assert response.json()["error"] == "invalid_token"
    assert "invalid_token" in response.headers["www-authenticate"]


def test_userinfo_without_token(client):
    response = client.get(USERINFO)
    assert response.status_code == 401
    assert response.json()["error"] == "invalid_token"


def test_client_info(client, make_user, make_app):
    make_user()
    app, _ = make_app(name="Photo Printer")

    assert client.get("/api/v1/oauth/client-info", params={"client_id": app.client_id}).status_code == 401

    login(client)
    response = client.get("/api/v1/oauth/client-info", params={"client_id": app.client_id})
    assert response.status_code == 200
    assert response.json()["name"] == "Photo Printer"
    assert "client_secret" not in response.json()

    response = client.get("/api/v1/oauth/client-info", params={"client_id": "sso_missing"})
    assert response.status_code == 404


def test_discovery_documents(client, key_manager):
    metadata = client.get("/.well-known/openid-configuration").json()
    assert metadata["issuer"] == settings.issuer
    assert metadata["token_endpoint"] == f"{settings.issuer}/api/v1/oauth/token"
    assert metadata["jwks_uri"] == f"{settings.issuer}/.well-known/jwks.json"
    assert metadata["code_challenge_methods_supported"] == ["plain", "S256"]
    assert metadata["response_types_supported"] == ["code"]
    assert "offline_access" in metadata["scopes_supported"]

    jwks = client.get("/.well-known/jwks.json").json()
    assert jwks["keys"][0]["kid"] == key_manager.kid
