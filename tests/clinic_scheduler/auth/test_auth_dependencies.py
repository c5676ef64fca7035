import os
from types import SimpleNamespace

import jwt
import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from clinic_scheduler.auth import dependencies  # noqa: E402
from clinic_scheduler.auth.jwt_handler import create_access_token, decode_access_token  # noqa: E402
from clinic_scheduler.core import config  # noqa: E402
from clinic_scheduler.database import Base  # noqa: E402
from clinic_scheduler.models.user import User  # noqa: E402


@pytest.fixture
def session_factory(monkeypatch):
    engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = factory()
    db.add(User(id=42, email='patient@example.com', name='Patient', role='patient'))
    db.commit()
    db.close()
    monkeypatch.setattr(dependencies, 'SessionLocal', factory)

    yield factory

    engine.dispose()


def _credentials(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)


def test_token_round_trip_keeps_subject_and_role() -> None:
    payload = decode_access_token(create_access_token('patient@example.com', role='patient'))

    assert payload['sub'] == 'patient@example.com'
    assert payload['role'] == 'patient'


def test_get_current_user_loads_user_by_email(session_factory) -> None:
    user = dependencies.get_current_user(_credentials(create_access_token('patient@example.com')))

    assert user.id == 42


def test_expired_token_is_rejected(session_factory) -> None:
    token = create_access_token('patient@example.com', expires_minutes=-1)

    with pytest.raises(HTTPException) as exception_info:
        dependencies.get_current_user(_credentials(token))

    assert exception_info.value.status_code == 401


def test_token_signed_with_other_key_is_rejected(session_factory) -> None:
    token = jwt.encode({'sub': 'patient@example.com'}, 'not-the-key', algorithm=config.JWT_ALGORITHM)

    with pytest.raises(HTTPException) as exception_info:
        dependencies.get_current_user(_credentials(token))

    assert exception_info.value.status_code == 401


def test_unknown_user_is_rejected(session_factory) -> None:
    with pytest.raises(HTTPException) as exception_info:
        dependencies.get_current_user(_credentials(create_access_token('ghost@example.com')))

    assert exception_info.value.detail == 'User not found'


@pytest.mark.parametrize(('role', 'allowed'), [('doctor', True), ('ADMIN', True), ('patient', False), (None, False)])
def test_require_staff(role, allowed: bool) -> None:
    user = SimpleNamespace(id=1, role=role)

    if allowed:
        assert dependencies.require_staff(user) is user
    else:
        with pytest.raises(HTTPException) as exception_info:
            dependencies.require_staff(user)
        assert exception_info.value.status_code == 403
