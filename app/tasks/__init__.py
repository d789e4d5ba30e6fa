from app.tasks.session_tasks import cleanup_expired_sessions

__all__ = [
    'cleanup_expired_sessions',
]
