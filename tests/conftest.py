import itertools

import pytest

from app import create_app
from config import Config
from models import db
from models.car import Car
from models.user import User, Role
from security.password import hash_password

PASSWORD = "secret123"


class AppTestConfig(Config):
    TESTING = True
    AUTO_CREATE_TABLES = True
    BCRYPT_ROUNDS = 4
    STRIPE_SECRET_KEY = "sk_test_dummy"
    STRIPE_WEBHOOK_SECRET = "whsec_dummy"
    LOG_LEVEL = "WARNING"


@pytest.fixture
def app(tmp_path):
    # file-backed SQLite so worker threads get their own connections
    class _Config(AppTestConfig):
        SQLALCHEMY_DATABASE_URI = "sqlite:///" + str(tmp_path / "test.db")
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 30}}
        UPLOAD_FOLDER = str(tmp_path / "uploads")

    app = create_app(_Config)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = itertools.count(1)

    def _make(email=None, admin=False, name="Test User"):
        email = email or f"user{next(counter)}@example.com"
        user = User(
            name=name,
            email=email,
            password_hash=hash_password(PASSWORD),
            phone="555-0100",
        )
        user.roles.append(Role.query.filter_by(name="ADMIN" if admin else "CUSTOMER").one())
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def make_car(app):
    counter = itertools.count(1)

    def _make(price=100, available=True, **overrides):
        n = next(counter)
        fields = dict(
            name=f"Corolla {n}",
            brand="Toyota",
            model="Corolla",
            year=2022,
            color="White",
            fuel_type="Petrol",
            transmission="Automatic",
            seats=5,
            price_per_day=price,
            location="Airport",
            registration_number=f"REG-{n:04d}",
            is_available=available,
        )
        fields.update(overrides)
        car = Car(**fields)
        db.session.add(car)
        db.session.commit()
        return car

    return _make


@pytest.fixture
def login(client):
    def _login(user):
        resp = client.post("/auth/login", json={"email": user.email, "password": PASSWORD})
        assert resp.status_code == 200, resp.get_json()
        return {"Authorization": f"Bearer {resp.get_json()['token']}"}

    return _login
