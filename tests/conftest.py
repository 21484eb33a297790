import os

# Must be set before the app modules read their environment
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import fakeredis
import pytest
from fastapi.testclient import TestClient

from cardkey_portal.core.config import Settings
from cardkey_portal.core.utils import configure_password_hashing
from cardkey_portal.main import create_app
from cardkey_portal.schemas.card_key_schema import CardKeyCreate
from cardkey_portal.storage.json_store import JsonFileStore
from cardkey_portal.storage.redis_store import RedisStore
from cardkey_portal.storage.sql_store import SqlStore

configure_password_hashing(4)

SAMPLE_IMPORT = (
    "租户URL：http://a\n"
    "访问令牌(Token)：t1\n"
    "邮箱：e@x.com\n"
    "实际到期日：2025-01-01\n"
    "查询参数：q=1\n"
    "----------------"
)


def make_record(n: int = 1, **overrides) -> CardKeyCreate:
    fields = dict(
        tenant_url=f"https://tenant{n}.example.com",
        access_token=f"tok_{n}",
        email=f"user{n}@example.com",
        balance_url=f"https://tenant{n}.example.com/balance",
        expiry_date="2025-12-31",
        query_params=f"q={n}",
    )
    fields.update(overrides)
    return CardKeyCreate(**fields)


@pytest.fixture
def make_settings(tmp_path):
    def _make(**overrides) -> Settings:
        values = dict(
            secret_key="test-secret-key",
            bcrypt_rounds=4,
            storage_backend="json",
            data_file=str(tmp_path / "cardkeys.json"),
            database_url=f"sqlite:///{tmp_path / 'cardkeys.db'}",
            public_base_url="https://keys.example.com",
            rate_limit_enabled=False,
        )
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture(params=["json", "sql", "redis"])
def store(request, tmp_path):
    if request.param == "json":
        s = JsonFileStore(str(tmp_path / "cardkeys.json"))
    elif request.param == "sql":
        s = SqlStore.from_url(f"sqlite:///{tmp_path / 'cardkeys.db'}")
    else:
        s = RedisStore(fakeredis.FakeRedis(decode_responses=True), key_prefix="test:")
    yield s
    s.close()


@pytest.fixture
def json_store(tmp_path):
    return JsonFileStore(str(tmp_path / "cardkeys.json"))


@pytest.fixture
def app(settings, json_store):
    return create_app(settings=settings, store=json_store)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def admin_client(client, settings):
    response = client.post(
        "/api/v1/admin/login",
        json={
            "username": settings.default_admin_username,
            "password": settings.default_admin_password,
        },
    )
    assert response.status_code == 200
    return client
