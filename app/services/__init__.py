"""Services package"""
from app.services.device_info import DeviceInfo
from app.services.session_store import RefreshSessionStore
from app.services.session_manager import SessionManager
from app.services.lockout import AccountLockoutPolicy
from app.services.auth_service import AuthService

__all__ = [
    'DeviceInfo',
    'RefreshSessionStore',
    'SessionManager',
    'AccountLockoutPolicy',
    'AuthService'
]
