"""
Unit tests for the Payments service admin surface.
"""

import pytest
from fastapi.testclient import TestClient

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_payments.app.main import PaymentsService
from service_payments.app.qpay import GatewayClient, InMemoryTenantConfigStore
from service_payments.app.qpay.token_acquirer import TOKEN_PATH
from service_payments.app.qpay.token_store import TokenRecord
from shared.test_helpers import FakeClock, GatewayStub, TestDataFactory, json_reply, token_reply

BASE_URL = "https://qpay.test"
ADMIN_KEY = "test-admin-key"


class TestPaymentsService:
    """Test cases for PaymentsService."""

    @pytest.fixture
    def gateway(self):
        return GatewayStub(BASE_URL)

    @pytest.fixture
    def clock(self):
        return FakeClock()

    @pytest.fixture
    def service(self, gateway, clock):
        tenants = InMemoryTenantConfigStore(TestDataFactory.create_test_tenants())
        gateway_client = GatewayClient(tenants, base_url=BASE_URL, http_client=gateway.client(), clock=clock)
        return PaymentsService(
            tenant_store=tenants,
            gateway_client=gateway_client,
            admin_api_key=ADMIN_KEY
        )

    @pytest.fixture
    def client(self, service):
        """Create test client."""
        return TestClient(service.app, headers={"X-Admin-Key": ADMIN_KEY})

    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "payments"

    def test_health_endpoint(self, client, service):
        service.gateway.token_store.put("tenant-1", "tok-1", 600)

        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["dependencies"] == {"tenants_configured": "2", "cached_tokens": "1"}

    def test_metrics_endpoint(self, client):
        client.get("/")
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text
        assert "qpay_auth_cascade_total" in response.text

    def test_admin_key_required(self, service):
        anonymous = TestClient(service.app)
        assert anonymous.get("/admin/tokens/poisoned").status_code == 401

        wrong = TestClient(service.app, headers={"X-Admin-Key": "nope"})
        assert wrong.delete("/admin/tokens/tenant-1").status_code == 401

    def test_token_status(self, client, service):
        service.gateway.token_store.put("tenant-1", "secret-token", 600)

        response = client.get("/admin/tokens/tenant-1")

        assert response.status_code == 200
        data = response.json()
        assert data["tenant_id"] == "tenant-1"
        assert data["expires_in_seconds"] == 600
        assert data["poisoned"] is False
        assert "secret-token" not in response.text

    def test_token_status_not_cached(self, client):
        assert client.get("/admin/tokens/tenant-1").status_code == 404

    def test_invalidate_token(self, client, service):
        service.gateway.token_store.put("tenant-1", "tok-1", 600)

        response = client.delete("/admin/tokens/tenant-1")
        assert response.json() == {"tenant_id": "tenant-1", "invalidated": True}

        response = client.delete("/admin/tokens/tenant-1")
        assert response.json() == {"tenant_id": "tenant-1", "invalidated": False}

    def test_list_and_purge_poisoned(self, client, service, clock):
        service.gateway.token_store._records["tenant-2"] = TokenRecord(
            "tenant-2", "poison", clock.now, clock.now + 365 * 24 * 3600
        )

        response = client.get("/admin/tokens/poisoned")
        assert response.json() == {"threshold_seconds": 3600, "tenants": ["tenant-2"]}

        response = client.post("/admin/tokens/poisoned/purge", params={"threshold_seconds": 7200})
        assert response.json() == {"threshold_seconds": 7200, "purged": ["tenant-2"]}

        assert client.get("/admin/tokens/poisoned").json()["tenants"] == []

    def test_negative_threshold_rejected(self, client):
        response = client.get("/admin/tokens/poisoned", params={"threshold_seconds": -5})
        assert response.status_code == 422

    def test_verify_credentials(self, client, gateway):
        gateway.route("POST", TOKEN_PATH, token_reply("tok-1", 1800))

        response = client.post("/admin/tenants/tenant-1/verify")

        assert response.status_code == 200
        assert response.json()["expires_in_seconds"] == 1800
        assert gateway.count("POST", TOKEN_PATH) == 1

    def test_verify_unknown_tenant(self, client, gateway):
        response = client.post("/admin/tenants/nobody/verify")

        assert response.status_code == 404
        assert response.json()["code"] == "CONFIGURATION_ERROR"
        assert gateway.calls == []

    def test_verify_rejected_credentials(self, client, gateway):
        gateway.route("POST", TOKEN_PATH, json_reply(401, {"error": "NO_CREDENDIALS"}))

        response = client.post("/admin/tenants/tenant-1/verify")

        assert response.status_code == 502
        data = response.json()
        assert data["code"] == "AUTHENTICATION_ERROR"
        assert data["details"]["status_code"] == 401
        assert data["details"]["tenant_id"] == "tenant-1"

    def test_admin_open_without_configured_key(self, gateway, clock):
        tenants = InMemoryTenantConfigStore(TestDataFactory.create_test_tenants())
        service = PaymentsService(
            tenant_store=tenants,
            gateway_client=GatewayClient(tenants, base_url=BASE_URL, http_client=gateway.client(), clock=clock),
            admin_api_key=None
        )

        assert TestClient(service.app).get("/admin/tokens/poisoned").status_code == 200

    def test_tenants_loaded_from_file(self, tmp_path):
        path = tmp_path / "tenants.json"
        path.write_text('{"tenants": {"tenant-9": {"username": "u", "password": "p", "terminal_id": "t"}}}')

        service = PaymentsService(qpay_tenants_file=str(path))

        assert service.tenant_store.tenant_ids() == ["tenant-9"]
