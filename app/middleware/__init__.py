"""
Middleware Package
Exports the request-time security middleware
"""
from .cors import CORSMiddleware
from .authentication import AuthenticationMiddleware

__all__ = [
    "CORSMiddleware",
    "AuthenticationMiddleware",
]
