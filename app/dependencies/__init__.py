"""
Dependencies package initialization
"""
from .auth import get_db, get_auth_service, get_auth_config, get_current_claims, get_current_user_id
from .rate_limit import get_rate_limiter, check_auth_rate_limit

__all__ = [
    'get_db',
    'get_auth_service',
    'get_auth_config',
    'get_current_claims',
    'get_current_user_id',
    'get_rate_limiter',
    'check_auth_rate_limit',
]
