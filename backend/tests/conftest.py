import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Backend modules are imported top-level, so the directory goes on sys.path before
# any app import. Secrets are set up front so no secret files get written.
BACKEND_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_DIR))

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SESSION_SECRET", "test-session-secret")
os.environ.setdefault("PASSWORD_PEPPER", "test-pepper")
os.environ.pop("REDIS_HOST", None)

import auth  # noqa: E402
import models  # noqa: E402
from database import get_db, init_cafe_defaults  # noqa: E402
from main import app  # noqa: E402
from rate_limiter import LoginRateLimiter  # noqa: E402

DEFAULT_PASSWORD = "secret123"


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    models.Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    init_cafe_defaults(factory)

    def override_get_db():
        db = factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.login_rate_limiter = LoginRateLimiter()
    yield factory
    app.dependency_overrides.clear()
    engine.dispose()


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def client(session_factory):
    return TestClient(app)


def make_client():
    return TestClient(app)


def create_user(db, role="customer", phone="01700000001", password=DEFAULT_PASSWORD, name="Test User",
                username=None, points=0, is_active=True):
    salt = auth.generate_salt()
    user = models.User(
        role=role,
        name=name,
        phone=phone,
        username=username or phone,
        password_hash=auth.hash_password(password, salt, auth.PASSWORD_PEPPER),
        password_salt=salt,
        is_active=is_active,
    )
    db.add(user)
    db.flush()
    db.add(models.LoyaltyPoints(user_id=user.id, points_total=points))
    db.commit()
    db.refresh(user)
    return user


def login(client, identifier, password=DEFAULT_PASSWORD):
    return client.post("/api/auth/login", json={"identifier": identifier, "password": password})


@pytest.fixture()
def catalog(db):
    """One location, an active and an inactive table, a category with two live products and one retired."""
    location = models.Location(name="Gulshan")
    db.add(location)
    db.flush()
    table = models.Table(location_id=location.id, code="T1", label="Table 1")
    closed_table = models.Table(location_id=location.id, code="T9", label="Table 9", is_active=False)
    category = models.Category(slug="coffee", name_en="Coffee", name_bn="কফি", sort_order=1)
    db.add_all([table, closed_table, category])
    db.flush()
    latte = models.Product(category_id=category.id, slug="latte", name_en="Latte", name_bn="লাতে",
                           description_en="Milk coffee", description_bn="দুধ কফি", price_tk=200,
                           is_featured=True)
    cake = models.Product(category_id=category.id, slug="cake", name_en="Cake", name_bn="কেক",
                          description_en="Chocolate cake", description_bn="চকলেট কেক", price_tk=150,
                          is_hot=True)
    retired = models.Product(category_id=category.id, slug="old", name_en="Old brew", name_bn="পুরানো",
                             description_en="Gone", description_bn="নেই", price_tk=90, is_active=False)
    db.add_all([latte, cake, retired])
    db.commit()
    return {
        "location": location.id,
        "table": table.id,
        "table_code": "T1",
        "latte": latte.id,
        "cake": cake.id,
        "retired": retired.id,
    }
