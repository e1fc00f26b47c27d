import os
import stat

from jose import jwt

from idp.services.key_manager import KeyManager, generate_signing_key


def test_generates_and_persists_key(tmp_path):
    manager = KeyManager(keys_dir=str(tmp_path))
    kid = manager.kid

    assert (tmp_path / "private.pem").exists()
    assert (tmp_path / "public.pem").exists()
    assert (tmp_path / "kid.txt").read_text().strip() == kid
    if os.name == "posix":
        mode = stat.S_IMODE((tmp_path / "private.pem").stat().st_mode)
        assert mode == 0o600

    # A second manager over the same directory loads the same key
    assert KeyManager(keys_dir=str(tmp_path)).kid == kid


def test_environment_key_takes_precedence(tmp_path):
    key = generate_signing_key()
    manager = KeyManager(
        keys_dir=str(tmp_path),
        env_private_key=key.private_pem.replace("\n", "\\n"),
        env_public_key=key.public_pem.replace("\n", "\\n"),
        env_key_id="env-kid",
    )

    assert manager.kid == "env-kid"
    assert not (tmp_path / "private.pem").exists()


def test_partial_environment_falls_back_to_files(tmp_path):
    key = generate_signing_key()
    manager = KeyManager(keys_dir=str(tmp_path), env_private_key=key.private_pem)

    assert manager.kid != ""
    assert (tmp_path / "private.pem").exists()


def test_signed_token_verifies_against_jwks(key_manager):
    token = key_manager.sign({"sub": "user-1", "aud": "client-1", "iss": "https://idp.example"})

    header = jwt.get_unverified_header(token)
    assert header["alg"] == "RS256"
    assert header["kid"] == key_manager.kid

    jwks = key_manager.jwks()
    assert len(jwks["keys"]) == 1
    public_jwk = jwks["keys"][0]
    assert public_jwk["kty"] == "RSA"
    assert public_jwk["use"] == "sig"
    assert public_jwk["alg"] == "RS256"
    assert public_jwk["kid"] == key_manager.kid
    assert "d" not in public_jwk

    claims = jwt.decode(token, jwks, algorithms=["RS256"], audience="client-1")
    assert claims["sub"] == "user-1"
