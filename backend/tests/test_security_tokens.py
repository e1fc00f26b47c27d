from idp.core.security import (
    generate_authorization_code,
    generate_client_id,
    generate_opaque_token,
    hash_client_secret,
    s256_challenge,
    verify_client_secret,
    verify_code_challenge,
)
from idp.config import settings


def test_s256_matches_rfc7636_appendix_b():
    verifier = "dBjftJeZ4CVP-mJ92TvYz3JvFpwoMp1fTbRmoJG8wZs"
    assert s256_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"


def test_verify_code_challenge_methods():
    verifier = "dBjftJeZ4CVP-mJ92TvYz3JvFpwoMp1fTbRmoJG8wZs"
    challenge = s256_challenge(verifier)
    assert verify_code_challenge(verifier, challenge, "S256")
    assert not verify_code_challenge("wrong-verifier", challenge, "S256")
    assert verify_code_challenge("same-value", "same-value", "plain")
    assert not verify_code_challenge("same-value", "other-value", "plain")


def test_unknown_or_non_ascii_inputs_never_verify():
    assert not verify_code_challenge("abc", "abc", "S512")
    assert not verify_code_challenge("café", s256_challenge("cafe"), "S256")
    assert not verify_code_challenge("café", "cafe", "plain")


def test_generated_credentials_are_unique_and_well_formed():
    codes = {generate_authorization_code() for _ in range(50)}
    assert len(codes) == 50
    assert all(len(code) == 64 for code in codes)
    assert generate_opaque_token() != generate_opaque_token()

    client_id = generate_client_id()
    assert client_id.startswith("sso_")
    assert len(client_id) == len("sso_") + 32


def test_client_secret_mac_is_keyed(monkeypatch):
    secret = "s3cret"
    stored = hash_client_secret(secret)
    assert stored != secret
    assert verify_client_secret(secret, stored)
    assert not verify_client_secret("other", stored)

    monkeypatch.setattr(settings, "SECRET_KEY", "another-key-entirely-another-key-entirely")
    assert not verify_client_secret(secret, stored)
