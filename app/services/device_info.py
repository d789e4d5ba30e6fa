from dataclasses import dataclass
from typing import Optional
from fastapi import Request


@dataclass(frozen=True)
class DeviceInfo:
    """Display-only description of the client behind a refresh session"""
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    device_type: Optional[str] = None
    device_name: Optional[str] = None

    @classmethod
    def from_request(cls, request: Request) -> "DeviceInfo":
        user_agent = request.headers.get("user-agent", "")
        return cls(
            user_agent=user_agent[:500] or None,
            ip_address=client_ip(request),
            device_type=detect_device_type(user_agent),
            device_name=detect_device_name(user_agent),
        )


def client_ip(request: Request) -> Optional[str]:
    # Check for forwarded IP first (if behind proxy)
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()[:45] or None
    return request.client.host if request.client else None


def detect_device_type(user_agent: str) -> str:
    ua = (user_agent or "").lower()

    if "tablet" in ua or "ipad" in ua:
        return "tablet"

    if "mobile" in ua or "iphone" in ua or "android" in ua:
        return "mobile"

    return "web"


def detect_device_name(user_agent: str) -> str:
    ua = (user_agent or "").lower()

    # Mobile devices
    if "iphone" in ua:
        return "iPhone"
    if "ipad" in ua:
        return "iPad"
    if "android" in ua:
        return "Android Device"

    # Browsers
    if "edg" in ua:
        return "Microsoft Edge"
    if "opera" in ua or "opr/" in ua:
        return "Opera"
    if "chrome" in ua:
        return "Chrome"
    if "firefox" in ua:
        return "Firefox"
    if "safari" in ua:
        return "Safari"

    return "Unknown Device"
