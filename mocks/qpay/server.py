"""
Mock QPay merchant gateway for local runs and integration tests.

Tokens are issued with ``expires_in`` as an absolute epoch timestamp, the way
the sandbox gateway answers, so clients exercise their TTL normalization.
"""

import base64
import time
import uuid
from typing import Any, Dict, Optional
from fastapi import FastAPI, HTTPException, Header, Request
import sys
import os

# Add shared directory to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.logging import get_logger


class MockQPayServer:
    """Mock QPay server implementation."""

    def __init__(self, port: int = 8090, token_lifetime: int = 3600):
        self.port = port
        self.token_lifetime = token_lifetime
        self.logger = get_logger("mock.qpay")
        self.app = FastAPI(title="Mock QPay", version="1.0.0")

        # username -> (password, terminal_id)
        self.merchants: Dict[str, Dict[str, str]] = {
            "merchant-1": {"password": "secret-1", "terminal_id": "TERM001"},
            "merchant-2": {"password": "secret-2", "terminal_id": "TERM002"},
        }

        self.tokens: Dict[str, str] = {}  # token -> username
        self.invoices: Dict[str, Dict[str, Any]] = {}
        self.calls: Dict[str, int] = {}

        # Test knobs
        self.reject_next_business_calls = 0
        self.reject_refresh = False

        self._setup_routes()

    def reset(self):
        """Forget issued tokens, invoices and counters."""
        self.tokens.clear()
        self.invoices.clear()
        self.calls.clear()
        self.reject_next_business_calls = 0
        self.reject_refresh = False

    def revoke_all_tokens(self):
        """Invalidate every issued token, as a gateway-side rotation would."""
        self.tokens.clear()

    def _setup_routes(self):
        """Set up mock QPay routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "mock-qpay",
                "message": "Mock QPay gateway for the Payments Access Layer",
                "version": "1.0.0"
            }

        @self.app.post("/v2/auth/token")
        async def token_endpoint(request: Request, authorization: Optional[str] = Header(None)):
            """Exchange basic credentials and a terminal for a bearer token."""
            self._count("token")
            username = self._check_basic(authorization)
            body = await self._json(request)

            if body.get("terminal_id") != self.merchants[username]["terminal_id"]:
                raise HTTPException(status_code=401, detail="Invalid terminal")

            return self._issue(username)

        @self.app.post("/v2/auth/refresh")
        async def refresh_endpoint(authorization: Optional[str] = Header(None)):
            """Exchange a held bearer token for a new one."""
            self._count("refresh")
            if self.reject_refresh:
                raise HTTPException(status_code=401, detail="Refresh rejected")

            username = self._check_bearer(authorization)
            return self._issue(username)

        @self.app.post("/v2/invoice")
        async def create_invoice(request: Request, authorization: Optional[str] = Header(None)):
            """Create an invoice, echoing the submitted fields."""
            self._count("invoice.create")
            username = self._authorize_business_call(authorization)
            body = await self._json(request)
            if "amount" not in body:
                raise HTTPException(status_code=400, detail="amount is required")

            invoice_id = str(uuid.uuid4())
            invoice = dict(body)
            invoice.update({
                "invoice_id": invoice_id,
                "merchant": username,
                "status": "OPEN",
                "qr_text": f"qpay://invoice/{invoice_id}",
                "qPay_shortUrl": f"https://s.qpay.mn/{invoice_id[:8]}",
            })
            self.invoices[invoice_id] = invoice
            return invoice

        @self.app.get("/v2/invoice/{invoice_id}")
        async def get_invoice(invoice_id: str, authorization: Optional[str] = Header(None)):
            """Fetch an invoice."""
            self._count("invoice.get")
            self._authorize_business_call(authorization)
            if invoice_id not in self.invoices:
                raise HTTPException(status_code=404, detail="Invoice not found")
            return self.invoices[invoice_id]

        @self.app.delete("/v2/invoice/{invoice_id}")
        async def cancel_invoice(invoice_id: str, authorization: Optional[str] = Header(None)):
            """Cancel an invoice."""
            self._count("invoice.cancel")
            self._authorize_business_call(authorization)
            invoice = self.invoices.get(invoice_id)
            if invoice is None:
                raise HTTPException(status_code=404, detail="Invoice not found")
            invoice["status"] = "CANCELLED"
            return {"invoice_id": invoice_id, "status": "CANCELLED"}

        @self.app.post("/v2/payment/check")
        async def check_payment(request: Request, authorization: Optional[str] = Header(None)):
            """Report payments made against an invoice."""
            self._count("payment.check")
            self._authorize_business_call(authorization)
            body = await self._json(request)
            invoice = self.invoices.get(body.get("invoice_id"))
            if invoice is None:
                raise HTTPException(status_code=404, detail="Invoice not found")

            paid = invoice["status"] == "PAID"
            return {
                "count": 1 if paid else 0,
                "paid_amount": invoice["amount"] if paid else 0,
                "rows": [{"payment_status": "PAID", "payment_amount": invoice["amount"]}] if paid else []
            }

        @self.app.post("/_mock/invoices/{invoice_id}/pay")
        async def mark_paid(invoice_id: str):
            """Settle an invoice out of band."""
            invoice = self.invoices.get(invoice_id)
            if invoice is None:
                raise HTTPException(status_code=404, detail="Invoice not found")
            invoice["status"] = "PAID"
            return {"invoice_id": invoice_id, "status": "PAID"}

        @self.app.get("/_mock/calls")
        async def call_counts():
            """Per-endpoint call counters."""
            return self.calls

    def _issue(self, username: str) -> Dict[str, Any]:
        token = f"mock-{uuid.uuid4().hex}"
        self.tokens[token] = username
        self.logger.info("Issued token", merchant=username)
        return {
            "token_type": "bearer",
            "access_token": token,
            "expires_in": int(time.time()) + self.token_lifetime,
        }

    def _check_basic(self, authorization: Optional[str]) -> str:
        if not authorization or not authorization.startswith("Basic "):
            raise HTTPException(status_code=401, detail="Basic credentials required")
        try:
            decoded = base64.b64decode(authorization[len("Basic "):]).decode("utf-8")
        except ValueError:
            raise HTTPException(status_code=401, detail="Malformed credentials")

        username, _, password = decoded.partition(":")
        merchant = self.merchants.get(username)
        if merchant is None or merchant["password"] != password:
            raise HTTPException(status_code=401, detail="Invalid credentials")
        return username

    def _check_bearer(self, authorization: Optional[str]) -> str:
        if not authorization or not authorization.startswith("Bearer "):
            raise HTTPException(status_code=401, detail="Bearer token required")
        username = self.tokens.get(authorization[len("Bearer "):])
        if username is None:
            raise HTTPException(status_code=401, detail="Invalid token")
        return username

    def _authorize_business_call(self, authorization: Optional[str]) -> str:
        if self.reject_next_business_calls > 0:
            self.reject_next_business_calls -= 1
            raise HTTPException(status_code=401, detail="Token rejected")
        return self._check_bearer(authorization)

    async def _json(self, request: Request) -> Dict[str, Any]:
        try:
            body = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid JSON body")
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="JSON object expected")
        return body

    def _count(self, name: str):
        self.calls[name] = self.calls.get(name, 0) + 1


def create_app():
    """Create mock QPay application."""
    server = MockQPayServer()
    return server.app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="0.0.0.0", port=8090)
