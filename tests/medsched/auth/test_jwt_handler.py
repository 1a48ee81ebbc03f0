from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from medsched.auth import jwt_handler
from medsched.auth.dependencies import get_current_user
from medsched.core import config


def _token(subject: str, minutes: int = 5, secret: str | None = None) -> str:
    issued_at = datetime.now(timezone.utc)
    payload = {'sub': subject, 'iat': issued_at, 'exp': issued_at + timedelta(minutes=minutes)}
    return jwt.encode(payload, secret or config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def _credentials(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)


def test_decode_access_token_returns_claims() -> None:
    payload = jwt_handler.decode_access_token(_token('house@medsched.test'))

    assert payload['sub'] == 'house@medsched.test'
    assert payload['exp'] > payload['iat']


def test_decode_access_token_rejects_foreign_signature() -> None:
    with pytest.raises(jwt.InvalidSignatureError):
        jwt_handler.decode_access_token(_token('house@medsched.test', secret='someone-else'))


def test_current_user_resolves_subject_case_insensitively(scheduling_db, people) -> None:
    user = get_current_user(credentials=_credentials(_token(' House@MedSched.test ')), db=scheduling_db)

    assert user.id == people.doctor


@pytest.mark.parametrize(
    ('token_factory', 'detail'),
    [
        (lambda: 'not-a-jwt', 'Invalid token'),
        (lambda: _token('house@medsched.test', minutes=-5), 'Invalid token'),
        (lambda: _token(''), 'Invalid token subject'),
        (lambda: _token('nobody@medsched.test'), 'User not found'),
        (lambda: _token('retired@medsched.test'), 'User is not active'),
    ],
)
def test_current_user_rejects_bad_tokens(scheduling_db, people, token_factory, detail) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=_credentials(token_factory()), db=scheduling_db)

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == detail
