"""
Test helper functions and factory methods for the Payments Access Layer.
"""

import asyncio
import json
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx

Reply = Union[httpx.Response, Exception, Callable[[httpx.Request], httpx.Response]]


class TestDataFactory:
    """Factory for creating test data."""

    @staticmethod
    def create_tenant_record(username: str = "merchant", password: str = "secret",
                             terminal_id: str = "TERM001", base_url: Optional[str] = None,
                             **extra) -> Dict[str, Any]:
        """Create a flat tenant record."""
        record = {
            "username": username,
            "password": password,
            "terminal_id": terminal_id,
        }
        if base_url is not None:
            record["base_url"] = base_url
        record.update(extra)
        return record

    @staticmethod
    def create_nested_tenant_record(username: str = "merchant", password: str = "secret",
                                    terminal_id: str = "TERM001") -> Dict[str, Any]:
        """Create a tenant record in the organization layout."""
        return {
            "name": "Demo Merchant LLC",
            "qpay": {
                "username": username,
                "password": password,
                "credentials": {"terminal_id": terminal_id},
            },
        }

    @staticmethod
    def create_test_tenants() -> Dict[str, Dict[str, Any]]:
        """Create tenant records for two merchants."""
        return {
            "tenant-1": TestDataFactory.create_tenant_record("merchant-1", "secret-1", "TERM001"),
            "tenant-2": TestDataFactory.create_tenant_record("merchant-2", "secret-2", "TERM002"),
        }

    @staticmethod
    def create_test_invoice(amount: int = 1000, **extra) -> Dict[str, Any]:
        """Create an invoice payload."""
        invoice = {
            "invoice_code": "TEST_INVOICE",
            "sender_invoice_no": "INV-0001",
            "invoice_receiver_code": "terminal",
            "invoice_description": "Test invoice",
            "amount": amount,
            "callback_url": "https://merchant.example.com/qpay/callback",
        }
        invoice.update(extra)
        return invoice


class FakeClock:
    """Manually advanced clock, in epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def token_reply(token: str, expires_in: Any = 3600) -> httpx.Response:
    """Token endpoint success body."""
    body = {"access_token": token, "token_type": "bearer"}
    if expires_in is not None:
        body["expires_in"] = expires_in
    return httpx.Response(200, json=body)


def json_reply(status_code: int, body: Any = None) -> httpx.Response:
    return httpx.Response(status_code, json=body if body is not None else {})


class GatewayStub:
    """Scripted stand-in for the QPay gateway behind ``httpx.MockTransport``.

    Replies are queued per ``(method, path)``; the last queued reply repeats
    once the queue is drained. An unscripted route answers 404. Exceptions in
    the queue are raised from the transport, so ``httpx.ConnectError`` models
    an unreachable gateway.
    """

    def __init__(self, base_url: str = "https://qpay.test"):
        self.base_url = base_url
        self.calls: List[httpx.Request] = []
        self._replies: Dict[Tuple[str, str], List[Reply]] = defaultdict(list)
        self._delays: Dict[str, float] = {}

    def route(self, method: str, path: str, *replies: Reply) -> "GatewayStub":
        self._replies[(method.upper(), path)].extend(replies)
        return self

    def delay(self, path: str, seconds: float) -> "GatewayStub":
        self._delays[path] = seconds
        return self

    def count(self, method: str, path: str) -> int:
        return len(self.requests(method, path))

    def requests(self, method: str, path: str) -> List[httpx.Request]:
        return [
            request for request in self.calls
            if request.method == method.upper() and request.url.path == path
        ]

    def bearer_tokens(self, method: str, path: str) -> List[str]:
        """Bearer tokens presented on a route, in call order."""
        return [
            request.headers.get("Authorization", "").replace("Bearer ", "", 1)
            for request in self.requests(method, path)
        ]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        path = request.url.path

        delay = self._delays.get(path)
        if delay:
            await asyncio.sleep(delay)

        queue = self._replies.get((request.method, path))
        if not queue:
            return httpx.Response(404, json={"error": "NOT_FOUND", "path": path})
        reply = queue.pop(0) if len(queue) > 1 else queue[0]

        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(request)
        # Fresh copy per call; a response object is bound to one request
        return httpx.Response(reply.status_code, headers=reply.headers, content=reply.content)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def request_json(request: httpx.Request) -> Any:
    """Decode a recorded request's JSON body."""
    return json.loads(request.content) if request.content else None
