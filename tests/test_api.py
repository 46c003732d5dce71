"""Tests for the HTTP API."""

import json
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from taler_gateway.api.app import create_app
from taler_gateway.config import Settings
from tests.conftest import API_TOKEN, MERCHANT_BASE_URL

pytestmark = pytest.mark.asyncio

ORDERS_PATH = "/instances/default/private/orders"
ACCOUNTS_PATH = "/instances/default/private/accounts"


def make_settings(tmp_path, **overrides) -> Settings:
    values = {
        "database_url": f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        "host": "127.0.0.1",
        "port": 8000,
        "debug": False,
        "log_level": "WARNING",
        "http_timeout_seconds": 5.0,
        "poll_interval_seconds": 3600.0,
        "merchant_base_url": MERCHANT_BASE_URL,
        "merchant_public_base_url": None,
        "merchant_instance_id": "default",
        "api_token": API_TOKEN,
        "instance_password": "instance-password",
        "assets": "CHF:2:Swiss Franc",
    }
    values.update(overrides)
    return Settings(**values)


def accept_orders(backend):
    """Answer order creation for any order id and register its status route."""

    def create_order(request: httpx.Request) -> httpx.Response:
        order_id = json.loads(request.content)["order_id"]
        backend.add(
            "GET",
            f"{ORDERS_PATH}/{order_id}",
            json_body={
                "order_status": "unpaid",
                "taler_pay_uri": f"taler+http://merchant/instances/default/pay?oid={order_id}",
            },
        )
        return httpx.Response(200, json={"order_id": order_id})

    backend.add_handler("POST", ORDERS_PATH, create_order)


@pytest_asyncio.fixture
async def app(tmp_path, backend):
    application = create_app(make_settings(tmp_path), merchant_client=backend.client())
    async with application.router.lifespan_context(application):
        yield application


@pytest_asyncio.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


class TestHealth:
    """Tests for health endpoints."""

    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "healthy"
        assert data["settlement_listener"] == "running"

    async def test_ready_and_live(self, client):
        assert (await client.get("/ready")).json() == {"status": "ready"}
        assert (await client.get("/live")).json() == {"status": "alive"}


class TestInvoices:
    """Tests for invoice endpoints."""

    async def test_create_invoice(self, client, backend):
        """Creating an invoice provisions a Taler order for the enabled asset."""
        accept_orders(backend)

        response = await client.post(
            "/api/v1/invoices", json={"amount": "9.999", "currency": "CHF"}
        )

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "new"
        [prompt] = data["prompts"]
        assert prompt["payment_method_id"] == "CHF-Taler"
        assert prompt["activated"] is True
        assert prompt["details"]["amount"] == "10.00"
        assert prompt["details"]["order_id"].endswith("-CHF")
        order_request = next(r for r in backend.requests if r.method == "POST")
        order = json.loads(order_request.content)
        assert order["order"]["amount"] == "CHF:10.00"

    async def test_get_invoice(self, client, backend):
        accept_orders(backend)
        created = (
            await client.post("/api/v1/invoices", json={"amount": "5", "currency": "CHF"})
        ).json()

        response = await client.get(f"/api/v1/invoices/{created['id']}")

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == created["id"]
        assert Decimal(data["prompts"][0]["due"]) == Decimal("5")
        assert data["payments"] == []

    async def test_get_missing_invoice(self, client):
        response = await client.get("/api/v1/invoices/does-not-exist")
        assert response.status_code == 404

    async def test_unknown_payment_method(self, client):
        response = await client.post(
            "/api/v1/invoices",
            json={"amount": "5", "currency": "CHF", "payment_methods": ["BTC-CHAIN"]},
        )
        assert response.status_code == 400

    async def test_invalid_amount(self, client):
        response = await client.post("/api/v1/invoices", json={"amount": "0", "currency": "CHF"})
        assert response.status_code == 422

    async def test_unavailable_backend_leaves_prompt_inactive(self, client, backend):
        """A rejected order keeps the invoice and records why the prompt is inactive."""
        backend.add("POST", ORDERS_PATH, status_code=409, json_body={"code": 2500})

        response = await client.post("/api/v1/invoices", json={"amount": "5", "currency": "CHF"})

        assert response.status_code == 201
        [prompt] = response.json()["prompts"]
        assert prompt["activated"] is False
        assert "no active bank account" in prompt["inactive_reason"]

    async def test_checkout(self, client, backend):
        accept_orders(backend)
        created = (
            await client.post("/api/v1/invoices", json={"amount": "5", "currency": "CHF"})
        ).json()
        pay_uri = created["prompts"][0]["details"]["taler_pay_uri"]

        response = await client.get(f"/api/v1/invoices/{created['id']}/checkout/CHF-Taler")

        assert response.status_code == 200
        data = response.json()
        assert data["payment_link"] == pay_uri
        assert data["qr_value"] == pay_uri
        assert data["show_pay_in_wallet_button"] is True
        assert data["currency_display_name"] == "Swiss Franc"

    async def test_checkout_unknown_method(self, client, backend):
        accept_orders(backend)
        created = (
            await client.post("/api/v1/invoices", json={"amount": "5", "currency": "CHF"})
        ).json()

        response = await client.get(f"/api/v1/invoices/{created['id']}/checkout/EUR-Taler")

        assert response.status_code == 404


class TestServerSettings:
    """Tests for the Taler server settings endpoints."""

    async def test_get_settings_with_bank_accounts(self, client, backend):
        backend.add(
            "GET",
            ACCOUNTS_PATH,
            json_body={"accounts": [{"payto_uri": "payto://iban/CH93", "h_wire": "H1", "active": True}]},
        )

        response = await client.get("/api/v1/server/taler")

        assert response.status_code == 200
        data = response.json()
        assert data["merchant_base_url"] == MERCHANT_BASE_URL
        assert data["has_api_token"] is True
        assert data["has_instance_password"] is True
        assert "api_token" not in data
        assert [a["asset_code"] for a in data["assets"]] == ["CHF"]
        assert data["bank_accounts"] == [{"payto_uri": "payto://iban/CH93", "h_wire": "H1", "active": True}]
        assert data["bank_accounts_error"] is None

    async def test_get_settings_when_accounts_fail(self, client, backend):
        """Bank account errors are reported alongside the settings."""
        backend.add("GET", ACCOUNTS_PATH, status_code=401, json_body={"code": 2})

        response = await client.get("/api/v1/server/taler")

        assert response.status_code == 200
        assert "401" in response.json()["bank_accounts_error"]

    async def test_update_keeps_omitted_secrets(self, app, client):
        response = await client.put(
            "/api/v1/server/taler",
            json={
                "merchant_base_url": "http://other-merchant/",
                "merchant_instance_id": "shop",
                "assets": [{"asset_code": "KUDOS", "divisibility": 0, "enabled": True}],
            },
        )

        assert response.status_code == 200
        assert "Restart" in response.json()["message"]
        stored = await app.state.settings_store.load()
        assert stored.merchant_base_url == "http://other-merchant/"
        assert stored.merchant_instance_id == "shop"
        assert stored.api_token == API_TOKEN
        assert [a.asset_code for a in stored.assets] == ["KUDOS"]
        # The running configuration keeps its startup snapshot
        assert list(app.state.plugin.handlers) == ["CHF-Taler"]

    async def test_refresh_assets(self, app, client, backend):
        backend.add(
            "GET",
            "/config",
            json_body={
                "currencies": {
                    "CHF": {"name": "Swiss Franc", "fraction": 2},
                    "KUDOS": {"name": "Kudos", "fraction": 0},
                }
            },
        )

        response = await client.post("/api/v1/server/taler/refresh-assets")

        assert response.status_code == 200
        data = response.json()
        assert (data["added"], data["updated"]) == (1, 1)
        kudos = next(a for a in data["assets"] if a["asset_code"] == "KUDOS")
        assert kudos["enabled"] is False
        stored = await app.state.settings_store.load()
        assert stored.find_asset("KUDOS") is not None

    async def test_refresh_assets_skips_unusable_fraction(self, app, client, backend):
        backend.add(
            "GET",
            "/config",
            json_body={"currencies": {"HUGE": {"name": "Huge", "fraction": 30}}},
        )

        response = await client.post("/api/v1/server/taler/refresh-assets")

        assert response.status_code == 200
        assert response.json()["added"] == 0
        assert (await app.state.settings_store.load()).find_asset("HUGE") is None
        assert (await client.get("/api/v1/server/taler")).status_code == 200


class TestInstanceProvisioning:
    """Tests for instance creation and token issuance."""

    async def test_init_instance_requires_self_provisioning(self, client, backend):
        backend.add("GET", "/config", json_body={"have_self_provisioning": False})

        response = await client.post("/api/v1/server/taler/init-instance")

        assert response.status_code == 409
        assert "self-provisioning is disabled" in response.json()["detail"]

    async def test_init_instance(self, app, client, backend):
        backend.add("GET", "/config", json_body={"have_self_provisioning": True})
        backend.add("POST", "/management/instances", status_code=204, text="")

        response = await client.post(
            "/api/v1/server/taler/init-instance", json={"instance_id": "shop"}
        )

        assert response.status_code == 200
        assert response.json()["message"] == "Instance shop created and saved."
        assert backend.last_json()["auth"] == {"method": "token", "password": "instance-password"}
        assert (await app.state.settings_store.load()).merchant_instance_id == "shop"

    async def test_init_existing_instance_on_legacy_endpoint(self, app, client, backend):
        """A 409 from the legacy endpoint still saves the settings."""
        backend.add("GET", "/config", json_body={"have_self_provisioning": True})
        backend.add("POST", "/instances", status_code=409, json_body={"code": 2001})
        before = await app.state.settings_store.load()

        response = await client.post("/api/v1/server/taler/init-instance")

        assert response.status_code == 200
        assert backend.paths()[-2:] == ["POST /management/instances", "POST /instances"]
        assert await app.state.settings_store.load() == before

    async def test_generate_token(self, app, client, backend):
        backend.add(
            "POST",
            "/instances/default/private/token",
            json_body={"access_token": "secret-token:new"},
        )

        response = await client.post("/api/v1/server/taler/generate-token")

        assert response.status_code == 200
        assert "scope: all" in response.json()["message"]
        assert backend.last_json()["scope"] == "all"
        assert (await app.state.settings_store.load()).api_token == "secret-token:new"

    async def test_generate_token_rejected(self, client, backend):
        """Backend rejections surface as bad gateway with the merchant status."""
        backend.add(
            "POST",
            "/instances/default/private/token",
            status_code=401,
            json_body={"code": 2, "hint": "unauthorized"},
        )

        response = await client.post("/api/v1/server/taler/generate-token")

        assert response.status_code == 502
        data = response.json()
        assert data["code"] == "MERCHANT_BACKEND_ERROR"
        assert data["merchant_status"] == 401
        assert data["merchant_code"] == 2


class TestBankAccounts:
    """Tests for bank account management."""

    async def test_list(self, client, backend):
        backend.add(
            "GET",
            ACCOUNTS_PATH,
            json_body={"accounts": [{"payto_uri": "payto://iban/CH93", "h_wire": "H1", "active": False}]},
        )

        response = await client.get("/api/v1/server/taler/bank-accounts")

        assert response.status_code == 200
        assert response.json() == [{"payto_uri": "payto://iban/CH93", "h_wire": "H1", "active": False}]

    async def test_add(self, client, backend):
        backend.add("POST", ACCOUNTS_PATH, json_body={"h_wire": "H2", "salt": "s"})

        response = await client.post(
            "/api/v1/server/taler/bank-accounts", json={"payto_uri": " payto://iban/CH93 "}
        )

        assert response.status_code == 201
        assert backend.last_json() == {"payto_uri": "payto://iban/CH93"}

    async def test_delete(self, client, backend):
        backend.add("DELETE", f"{ACCOUNTS_PATH}/H1", status_code=204, text="")

        response = await client.delete("/api/v1/server/taler/bank-accounts/H1")

        assert response.status_code == 200
        assert backend.paths()[-1] == f"DELETE {ACCOUNTS_PATH}/H1"

    async def test_requires_token(self, tmp_path, backend):
        """Without a stored API token account management is refused."""
        application = create_app(
            make_settings(tmp_path, api_token=None), merchant_client=backend.client()
        )
        async with application.router.lifespan_context(application):
            async with AsyncClient(
                transport=ASGITransport(app=application), base_url="http://test"
            ) as c:
                response = await c.get("/api/v1/server/taler/bank-accounts")

        assert response.status_code == 409
