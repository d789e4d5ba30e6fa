"""Device descriptions derived from request headers."""
import pytest
from starlette.requests import Request

from app.services.device_info import DeviceInfo, detect_device_name, detect_device_type
from tests.conftest import CHROME_UA, IPAD_UA, IPHONE_UA

EDGE_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0"
)
ANDROID_UA = (
    "Mozilla/5.0 (Linux; Android 14; Pixel 8) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"
)
FIREFOX_UA = "Mozilla/5.0 (X11; Linux x86_64; rv:121.0) Gecko/20100101 Firefox/121.0"
SAFARI_UA = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_2) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.2 Safari/605.1.15"
)
OPERA_UA = CHROME_UA + " OPR/106.0.0.0"


def make_request(headers: dict, client=("203.0.113.7", 51000)) -> Request:
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": client,
    })


class TestDetection:

    @pytest.mark.parametrize("user_agent,device_type,device_name", [
        (CHROME_UA, "web", "Chrome"),
        (IPHONE_UA, "mobile", "iPhone"),
        (IPAD_UA, "tablet", "iPad"),
        (ANDROID_UA, "mobile", "Android Device"),
        (EDGE_UA, "web", "Microsoft Edge"),
        (FIREFOX_UA, "web", "Firefox"),
        (SAFARI_UA, "web", "Safari"),
        (OPERA_UA, "web", "Opera"),
        ("curl/8.4.0", "web", "Unknown Device"),
        ("", "web", "Unknown Device"),
    ])
    def test_user_agents(self, user_agent, device_type, device_name):
        assert detect_device_type(user_agent) == device_type
        assert detect_device_name(user_agent) == device_name


class TestFromRequest:

    def test_reads_user_agent_and_client_address(self):
        info = DeviceInfo.from_request(make_request({"User-Agent": IPHONE_UA}))

        assert info.user_agent == IPHONE_UA
        assert info.ip_address == "203.0.113.7"
        assert info.device_type == "mobile"
        assert info.device_name == "iPhone"

    def test_forwarded_for_wins_over_peer_address(self):
        info = DeviceInfo.from_request(
            make_request({"User-Agent": CHROME_UA, "X-Forwarded-For": "198.51.100.2, 10.0.0.1"})
        )
        assert info.ip_address == "198.51.100.2"

    def test_missing_headers(self):
        info = DeviceInfo.from_request(make_request({}, client=None))

        assert info.user_agent is None
        assert info.ip_address is None
        assert info.device_type == "web"
        assert info.device_name == "Unknown Device"
