import pytest
from fastapi.testclient import TestClient

from cardkey_portal.main import create_app

from conftest import make_record

KEY = "/api/v1/key"
SECRET_FIELDS = {"access_token", "tenant_url", "email", "balance_url", "query_params"}


@pytest.fixture
def token(json_store):
    return json_store.add_card_key(make_record(7))


def _client_with_policy(make_settings, json_store, policy):
    app = create_app(settings=make_settings(redeem_direct_fetch=policy), store=json_store)
    return TestClient(app)


def test_check_then_confirm(client, json_store, token):
    check = client.get(f"{KEY}/{token}", params={"check": "true"})
    assert check.status_code == 200
    masked = check.json()["data"]
    assert masked["requires_confirmation"] is True
    assert masked["is_used"] is False
    assert masked["expiry_date"] == "2025-12-31"
    assert not SECRET_FIELDS & set(masked)
    assert json_store.get_card_key_by_token(token).is_used is False

    confirm = client.get(f"{KEY}/{token}", params={"confirm": "true"})
    assert confirm.status_code == 200
    data = confirm.json()["data"]
    assert data["access_token"] == "tok_7"
    assert data["is_used"] is True
    assert data["used_at"] is not None
    assert data["formatted"].startswith("您的登录信息如下\n租户URL：https://tenant7.example.com")
    assert json_store.get_card_key_by_token(token).is_used is True


def test_responses_never_expose_id_or_token(client, token):
    for params in ({"check": "true"}, {"confirm": "true"}, {"check": "true"}, {}):
        data = client.get(f"{KEY}/{token}", params=params).json()["data"]
        assert "id" not in data
        assert "secure_token" not in data


def test_check_on_used_key_reveals_record(client, json_store, token):
    json_store.mark_card_key_as_used(token)
    data = client.get(f"{KEY}/{token}", params={"check": "true"}).json()["data"]
    assert data["is_used"] is True
    assert data["access_token"] == "tok_7"


def test_second_confirm_keeps_first_timestamp(client, json_store, token):
    first = client.get(f"{KEY}/{token}", params={"confirm": "true"}).json()["data"]
    second = client.get(f"{KEY}/{token}", params={"confirm": "true"}).json()["data"]
    assert second["used_at"] == first["used_at"]
    assert json_store.get_stats().used == 1


def test_unknown_token(client):
    for params in ({"check": "true"}, {"confirm": "true"}, {}):
        response = client.get(f"{KEY}/{'0' * 64}", params=params)
        assert response.status_code == 404
        assert response.json()["success"] is False


def test_direct_fetch_consumes_by_default(client, json_store, token):
    data = client.get(f"{KEY}/{token}").json()["data"]
    assert data["access_token"] == "tok_7"
    assert json_store.get_card_key_by_token(token).is_used is True


def test_direct_fetch_reveal_policy(make_settings, json_store, token):
    with _client_with_policy(make_settings, json_store, "reveal") as client:
        data = client.get(f"{KEY}/{token}").json()["data"]
    assert data["access_token"] == "tok_7"
    assert data["is_used"] is False
    assert json_store.get_card_key_by_token(token).is_used is False


def test_direct_fetch_deny_policy(make_settings, json_store, token):
    with _client_with_policy(make_settings, json_store, "deny") as client:
        data = client.get(f"{KEY}/{token}").json()["data"]
    assert data["requires_confirmation"] is True
    assert "access_token" not in data
    assert json_store.get_card_key_by_token(token).is_used is False
