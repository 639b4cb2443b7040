"""User-agent classification for visit records.

Each table is checked top to bottom and the first matching substring wins,
so more specific tokens must come before the ones they contain (Edge and
Opera user agents also carry "Chrome"; Chrome carries "Safari").
"""

from typing import List, NamedTuple, Optional, Tuple

from models.visit import DeviceType

DEVICE_RULES: List[Tuple[Tuple[str, ...], DeviceType]] = [
    (("tablet", "ipad"), DeviceType.TABLET),
    (("mobi", "android"), DeviceType.MOBILE),
]

BROWSER_RULES: List[Tuple[Tuple[str, ...], str]] = [
    (("edg/", "edge/", "edga/", "edgios/"), "Edge"),
    (("opr/", "opera"), "Opera"),
    (("firefox/", "fxios/"), "Firefox"),
    (("chrome/", "crios/", "chromium/"), "Chrome"),
    (("safari/",), "Safari"),
]

OS_RULES: List[Tuple[Tuple[str, ...], str]] = [
    (("windows",), "Windows"),
    (("android",), "Android"),
    (("iphone", "ipad", "ipod"), "iOS"),
    (("mac os", "macintosh"), "macOS"),
    (("linux", "cros"), "Linux"),
]

UNKNOWN_BROWSER = "Unknown"


class UserAgentInfo(NamedTuple):
    device: DeviceType
    browser: str
    os: Optional[str]


def _first_match(ua: str, rules):
    for needles, label in rules:
        if any(needle in ua for needle in needles):
            return label
    return None


def classify_user_agent(user_agent: Optional[str]) -> UserAgentInfo:
    """Classify device, browser and OS from a user-agent string.

    Defaults to Desktop/Unknown when nothing matches. The OS has no default
    and is ``None`` when unrecognised.
    """
    ua = (user_agent or "").lower()
    return UserAgentInfo(
        device=_first_match(ua, DEVICE_RULES) or DeviceType.DESKTOP,
        browser=_first_match(ua, BROWSER_RULES) or UNKNOWN_BROWSER,
        os=_first_match(ua, OS_RULES),
    )
