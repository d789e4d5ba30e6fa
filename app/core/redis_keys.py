from __future__ import annotations

from config import settings


def redis_key(*parts: object) -> str:
    """Namespaced Redis key, e.g. ``auth:sessions:cleanup:lock``"""
    segments = [settings.REDIS_KEY_PREFIX]
    for part in parts:
        if part is None:
            continue
        value = str(part).strip().strip(":")
        if value:
            segments.append(value)
    return ":".join(segments)
