"""
Shared fixtures: in-memory SQLite database, model factories, a fake
object store and an API client wired to the test session.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENABLE_CRON", "false")
os.environ.setdefault("JWT_SECRET", "test-secret")

from decimal import Decimal
from typing import Dict, Iterator, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from mobifaktura.common.rate_limit import auth_limiter, read_limiter, write_limiter
from mobifaktura.core.database import Base
from mobifaktura.core.dependencies import get_db
from mobifaktura.core.exceptions import NotFoundError
from mobifaktura.core.security import get_password_hash
from mobifaktura.main import app
from mobifaktura.models import Company, User, UserCompanyPermission, UserRole
from mobifaktura.services.ledger_service import LedgerService
from mobifaktura.services.storage_service import StoredObject, get_storage

DEFAULT_PASSWORD = "Password123"
PASSWORD_HASH = get_password_hash(DEFAULT_PASSWORD)

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def other_session(db):
    """Second independent session on the same database."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def reset_rate_limits():
    for limiter in (auth_limiter, write_limiter, read_limiter):
        limiter.reset()
    yield


class FakeStorage:
    def __init__(self) -> None:
        self.objects: Dict[str, StoredObject] = {}

    def upload(self, key: str, content: bytes, content_type: str) -> str:
        self.objects[key] = StoredObject(content=content, content_type=content_type)
        return key

    def get(self, key: str) -> StoredObject:
        if key not in self.objects:
            raise NotFoundError("Image not found")
        return self.objects[key]

    def delete(self, key: str) -> None:
        self.objects.pop(key, None)

    def list_keys(self, prefix: str = "") -> Iterator[str]:
        return iter([key for key in self.objects if key.startswith(prefix)])


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def client(db, storage):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


# ================= FACTORIES ===================

_counter = {"n": 0}


def _next() -> int:
    _counter["n"] += 1
    return _counter["n"]


def make_user(
    db,
    role: UserRole = UserRole.user,
    name: Optional[str] = None,
    email: Optional[str] = None,
    saldo=None,
) -> User:
    n = _next()
    user = User(
        email=email or f"{role.value}{n}@mobifaktura.pl",
        name=name or f"{role.value.title()} {n}",
        role=role,
        password_hash=PASSWORD_HASH,
    )
    db.add(user)
    db.commit()
    if saldo is not None and Decimal(saldo) != 0:
        LedgerService(db).adjust_saldo(user.id, Decimal(saldo), "Opening balance", user)
        db.refresh(user)
    return user


def make_company(db, name: Optional[str] = None, active: bool = True) -> Company:
    company = Company(name=name or f"Firma {_next()} Sp. z o.o.", nip="1234567890", active=active)
    db.add(company)
    db.commit()
    return company


def grant(db, user: User, company: Company) -> None:
    db.add(UserCompanyPermission(user_id=user.id, company_id=company.id))
    db.commit()


@pytest.fixture
def admin(db) -> User:
    return make_user(db, UserRole.admin, name="Admin")


@pytest.fixture
def accountant(db) -> User:
    return make_user(db, UserRole.accountant, name="Anna Księgowa")


@pytest.fixture
def company(db) -> Company:
    return make_company(db, name="Acme Sp. z o.o.")


@pytest.fixture
def employee(db, company) -> User:
    user = make_user(db, UserRole.user, name="Jan Kowalski")
    grant(db, user, company)
    return user


def login(client: TestClient, user: User, password: str = DEFAULT_PASSWORD) -> Dict[str, str]:
    response = client.post("/api/v1/auth/login", json={"email": user.email, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}
