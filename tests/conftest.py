import os
import sys
from pathlib import Path

# Ajoute la racine du projet au PYTHONPATH EN PREMIER
sys.path.insert(0, str(Path(__file__).parent.parent))

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Créer engine SQLite pour tests AVANT d'importer app
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///./test.db"
os.environ.setdefault("DATABASE_URL", SQLALCHEMY_TEST_DATABASE_URL)
test_engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

# PATCH: remplacer le engine et SessionLocal du core.database AVANT d'importer app
import pagetree.core.database
pagetree.core.database.engine = test_engine
pagetree.core.database.SessionLocal = TestingSessionLocal

from pagetree.core.database import Base, get_db
from pagetree.core.security import create_access_token
from pagetree.main import app
from pagetree.models.user import User
from pagetree.services import workspace_service

def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

@pytest.fixture(autouse=True)
def setup_teardown():
    """Crée et nettoie la DB avant/après chaque test"""
    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)

# Override la dépendance
app.dependency_overrides[get_db] = override_get_db


@pytest.fixture
def client():
    """Client de test FastAPI"""
    from fastapi.testclient import TestClient
    return TestClient(app)


@pytest.fixture
def db():
    """Session DB pour les tests"""
    db = TestingSessionLocal()
    yield db
    db.close()


def _create_user(db, name: str) -> User:
    user = User(email=f"{name}@example.com", username=name)
    user.set_password("pass123")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.email)}"}


@pytest.fixture
def make_user(db):
    """Fabrique d'utilisateurs: make_user("bob")"""
    return lambda name: _create_user(db, name)


@pytest.fixture
def headers_for():
    """headers_for(user) -> header Authorization"""
    return _headers


@pytest.fixture
def owner(db):
    return _create_user(db, "owner")


@pytest.fixture
def outsider(db):
    """Utilisateur qui n'est membre d'aucun workspace"""
    return _create_user(db, "outsider")


@pytest.fixture
def auth_headers(owner):
    return _headers(owner)


@pytest.fixture
def workspace(db, owner):
    ws, _ = workspace_service.create_workspace(db, owner.id, "Mon workspace")
    return ws
