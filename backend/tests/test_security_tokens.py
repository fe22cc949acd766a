from datetime import timedelta

import pytest

from broker_dashboard.core.exceptions import TokenExpiredError, TokenInvalidError
from broker_dashboard.core.security import (
    create_access_token,
    create_refresh_token,
    decode_access_token,
    decode_token,
    get_password_hash,
    hash_refresh_token,
    verify_password,
)


def test_access_token_rejects_refresh_typ():
    refresh = create_refresh_token({"sub": "1"})
    assert decode_access_token(refresh) is None


def test_access_token_round_trip():
    token = create_access_token({"sub": "7"})
    payload = decode_access_token(token)
    assert payload is not None
    assert payload["sub"] == "7"
    assert payload["typ"] == "access"


def test_refresh_token_verifies_with_refresh_secret():
    token = create_refresh_token({"sub": "9"})
    payload = decode_token(token, refresh=True)
    assert payload["typ"] == "refresh"
    assert payload["sub"] == "9"


def test_tokens_issued_together_are_distinct():
    first = create_refresh_token({"sub": "3"})
    second = create_refresh_token({"sub": "3"})
    assert first != second
    assert hash_refresh_token(first) != hash_refresh_token(second)


def test_expired_token_raises_token_expired():
    token = create_access_token({"sub": "1"}, expires_delta=timedelta(seconds=-1))
    with pytest.raises(TokenExpiredError):
        decode_token(token)
    assert decode_access_token(token) is None


def test_tampered_token_raises_invalid():
    token = create_access_token({"sub": "1"})
    with pytest.raises(TokenInvalidError):
        decode_token(token.rsplit(".", 1)[0] + ".invalidsignature")


def test_refresh_digest_is_stable_sha256_hex():
    digest = hash_refresh_token("abc")
    assert digest == hash_refresh_token("abc")
    assert len(digest) == 64


def test_password_hash_never_equals_plaintext():
    stored = get_password_hash("secret1")
    assert stored != "secret1"
    assert verify_password("secret1", stored)
    assert not verify_password("secret2", stored)
    assert not verify_password("", stored)
