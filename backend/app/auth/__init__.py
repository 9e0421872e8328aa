# app/auth/__init__.py
"""
Authentication modules for the identity backend.

This package contains:
- identity.py: Canonical authenticated principal model (provider agnostic)
- provider.py: Identity provider session token verification and principal lookup
- webhook_signature.py: svix signature verification for provider webhooks
"""
from app.auth.identity import Identity

__all__ = ["Identity"]
