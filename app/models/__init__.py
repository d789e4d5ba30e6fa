from app.models.user import User, RefreshSession, LoginAttempt


__all__ = [
    "User",
    "RefreshSession",
    "LoginAttempt",
]
