"""
Billing Kernel - shared foundation for the commission engines.

Provides:
- Structured JSON logging with request-scoped context
- Typed exception hierarchy with machine-readable codes
- Currency precision lookup and Decimal amount coercion
"""

__version__ = "0.1.0"
