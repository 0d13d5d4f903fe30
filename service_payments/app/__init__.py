"""
Payments Service package for the Payments Access Layer.

Wraps the external QPay gateway for every tenant:
- Credentials: resolved per call from tenant configuration
- Tokens: cached per tenant, bounded TTL, single-flight acquisition
- Recovery: refresh, then reacquire, on gateway 401s

Structure:
- app.main: FastAPI app exposing the token administration surface.
- app.models: Request/response models for the admin routes.
- app.qpay: The gateway client.
"""
