from datetime import datetime, timedelta, timezone

import jwt
import pytest

from app.core import config
from app.core.errors import AppError, ErrorKind
from app.features.users.auth import verify_jwt_token


def _token(secret: str, **claims) -> str:
    payload = {"sub": "01HUSER", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)}
    payload.update(claims)
    return jwt.encode(payload, secret, algorithm="HS256")


def test_valid_token_returns_payload():
    assert verify_jwt_token(_token(config.JWT_SECRET))["sub"] == "01HUSER"


@pytest.mark.parametrize("secret", [None, ""])
def test_missing_secret_rejects_every_token(monkeypatch, secret):
    monkeypatch.setattr(config, "JWT_SECRET", secret)

    with pytest.raises(AppError) as exc_info:
        verify_jwt_token(_token("change-me", sub="any-admin-id"))

    assert exc_info.value.kind is ErrorKind.UNAUTHORIZED
    assert exc_info.value.status_code == 401


def test_wrong_signature_is_unauthorized():
    with pytest.raises(AppError) as exc_info:
        verify_jwt_token(_token("someone-else"))
    assert exc_info.value.kind is ErrorKind.UNAUTHORIZED


def test_token_without_exp_is_unauthorized():
    token = jwt.encode({"sub": "01HUSER"}, config.JWT_SECRET, algorithm="HS256")
    with pytest.raises(AppError) as exc_info:
        verify_jwt_token(token)
    assert exc_info.value.message.startswith("Invalid token")
