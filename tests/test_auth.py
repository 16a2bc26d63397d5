import pytest
from itsdangerous import URLSafeTimedSerializer

from auth import (
    AuthenticationError,
    _serializer,
    current_owner_id,
    decode_access_token,
    issue_access_token,
)


def test_issued_token_decodes_to_owner():
    token = issue_access_token(42)
    assert decode_access_token(token) == 42
    assert current_owner_id(f"Bearer {token}") == 42


def test_tampered_token_is_rejected():
    token = issue_access_token(42)
    with pytest.raises(AuthenticationError):
        decode_access_token(("A" if token[0] != "A" else "B") + token[1:])


def test_token_signed_with_other_secret_is_rejected():
    forged = URLSafeTimedSerializer("not-the-secret", salt="access-token").dumps({"u": 1})
    with pytest.raises(AuthenticationError):
        decode_access_token(forged)


def test_token_without_owner_is_rejected():
    token = _serializer().dumps({"u": "1"})
    with pytest.raises(AuthenticationError):
        decode_access_token(token)


@pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer   ", "Basic abc"])
def test_missing_or_malformed_header(header):
    with pytest.raises(AuthenticationError):
        current_owner_id(header)
