"""
HTTP surface for sealedswap.
"""
from .app import create_app
from .auth import OperatorGuard, verify_operator_token

__all__ = ["create_app", "OperatorGuard", "verify_operator_token"]
