"""
Unit tests for the QPay gateway client facade.
"""

import pytest
from unittest.mock import AsyncMock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_payments.app.qpay import GatewayClient, InMemoryTenantConfigStore
from service_payments.app.qpay.token_acquirer import TOKEN_PATH
from service_payments.app.qpay.token_store import TokenRecord
from shared.config import get_config
from shared.errors import ConfigurationError
from shared.test_helpers import (
    FakeClock,
    GatewayStub,
    TestDataFactory,
    json_reply,
    request_json,
    token_reply,
)

BASE_URL = "https://qpay.test"


def echo_invoice(request):
    invoice = request_json(request)
    invoice["invoice_id"] = "inv-1"
    return json_reply(200, invoice)


class TestGatewayClient:
    """Test cases for GatewayClient."""

    @pytest.fixture
    def gateway(self):
        return GatewayStub(BASE_URL)

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def tenants(self):
        return InMemoryTenantConfigStore(TestDataFactory.create_test_tenants())

    @pytest.fixture
    def client(self, gateway, tenants, clock):
        return GatewayClient(tenants, base_url=BASE_URL, http_client=gateway.client(), clock=clock)

    @pytest.mark.asyncio
    async def test_create_invoice_end_to_end(self, client, gateway):
        """A cold client acquires once, posts once and returns the echoed invoice."""
        gateway.route("POST", TOKEN_PATH, token_reply("tok-1"))
        gateway.route("POST", "/v2/invoice", echo_invoice)

        invoice = {
            "amount": 1000,
            "currency": "MNT",
            "dueDate": "2026-12-31",
            "items": [{"description": "Premium episode pack", "amount": 1000}],
        }
        result = await client.create_invoice("tenant-1", invoice)

        assert result["amount"] == 1000
        assert result["invoice_id"] == "inv-1"
        assert [request.url.path for request in gateway.calls] == [TOKEN_PATH, "/v2/invoice"]

    @pytest.mark.asyncio
    async def test_get_invoice(self, client, gateway):
        gateway.route("POST", TOKEN_PATH, token_reply("tok-1"))
        gateway.route("GET", "/v2/invoice/inv-1", json_reply(200, {"invoice_id": "inv-1"}))

        assert await client.get_invoice("tenant-1", "inv-1") == {"invoice_id": "inv-1"}

    @pytest.mark.asyncio
    async def test_invoice_id_is_escaped(self, client, gateway):
        gateway.route("POST", TOKEN_PATH, token_reply("tok-1"))
        gateway.route("DELETE", "/v2/invoice/a/b", json_reply(200, {"status": "CANCELLED"}))

        await client.cancel_invoice("tenant-1", "a/b")

        assert gateway.calls[-1].url.raw_path == b"/v2/invoice/a%2Fb"

    @pytest.mark.asyncio
    async def test_empty_invoice_id_rejected(self, client, gateway):
        with pytest.raises(ValueError):
            await client.get_invoice("tenant-1", "")
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_check_payment(self, client, gateway):
        gateway.route("POST", TOKEN_PATH, token_reply("tok-1"))
        gateway.route("POST", "/v2/payment/check", json_reply(200, {"count": 0, "rows": []}))

        result = await client.check_payment("tenant-1", "inv-1")

        assert result == {"count": 0, "rows": []}
        assert request_json(gateway.calls[-1]) == {"invoice_id": "inv-1"}

    @pytest.mark.asyncio
    async def test_clients_do_not_share_tokens(self, gateway, tenants, clock):
        gateway.route("POST", TOKEN_PATH, token_reply("tok-1"))
        gateway.route("GET", "/v2/invoice/inv-1", json_reply(200, {}))

        first = GatewayClient(tenants, base_url=BASE_URL, http_client=gateway.client(), clock=clock)
        second = GatewayClient(tenants, base_url=BASE_URL, http_client=gateway.client(), clock=clock)
        await first.get_invoice("tenant-1", "inv-1")
        await second.get_invoice("tenant-1", "inv-1")

        assert gateway.count("POST", TOKEN_PATH) == 2

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, client, gateway):
        with pytest.raises(ConfigurationError):
            await client.create_invoice("nobody", {"amount": 1})
        assert gateway.calls == []

    def test_invalidate_token(self, client):
        client.token_store.put("tenant-1", "tok-1", 600)

        assert client.invalidate_token("tenant-1") is True
        assert client.token_status("tenant-1") is None
        assert client.invalidate_token("tenant-1") is False

    def test_list_and_purge_poisoned_tenants(self, client, clock):
        client.token_store.put("tenant-1", "good", 600)
        client.token_store._records["tenant-2"] = TokenRecord(
            "tenant-2", "poison", clock.now, clock.now + 100 * 24 * 3600
        )

        assert client.list_poisoned_tenants() == ["tenant-2"]
        assert client.list_poisoned_tenants(threshold_seconds=300) == ["tenant-1", "tenant-2"]
        assert client.purge_poisoned_tenants() == ["tenant-2"]
        assert client.list_poisoned_tenants() == []
        assert client.token_status("tenant-1") is not None

    def test_negative_threshold_rejected(self, client):
        with pytest.raises(ValueError):
            client.list_poisoned_tenants(threshold_seconds=-1)

    @pytest.mark.asyncio
    async def test_verify_credentials_replaces_token(self, client, gateway):
        client.token_store.put("tenant-1", "old", 600)
        gateway.route("POST", TOKEN_PATH, token_reply("new", 1800))

        status = await client.verify_credentials("tenant-1")

        assert status.tenant_id == "tenant-1"
        assert status.expires_in_seconds == 1800
        assert status.poisoned is False
        assert client.token_store.get("tenant-1").token == "new"

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_client_open(self, client, gateway):
        await client.aclose()
        assert client.http_client.is_closed is False

    @pytest.mark.asyncio
    async def test_owned_http_client_closed(self, tenants):
        async with GatewayClient(tenants, base_url=BASE_URL) as client:
            http_client = client.http_client
        assert http_client.is_closed is True

    def test_from_config(self, tenants):
        config = get_config(
            "payments",
            8020,
            qpay_base_url="https://merchant.qpay.mn/",
            qpay_token_max_ttl_seconds=1800,
            qpay_token_min_ttl_seconds=30,
            master_key="test-master-key",
        )
        client = GatewayClient.from_config(config, tenants, http_client=AsyncMock())

        assert client.resolver.default_base_url == "https://merchant.qpay.mn"
        assert client.token_store.max_ttl == 1800
        assert client.token_store.min_ttl == 30
        assert client.resolver.secrets is not None
