"""Request-derived submission metadata (user agent, referrer, client address)."""

import re
from typing import Optional, Dict, Any

# Order matters: Edge and Opera user agents also claim Chrome and Safari.
_BROWSERS = [
    ("Edge", re.compile(r"Edg(?:e|A|iOS)?/([\d.]+)")),
    ("Opera", re.compile(r"(?:OPR|Opera)/([\d.]+)")),
    ("Firefox", re.compile(r"(?:Firefox|FxiOS)/([\d.]+)")),
    ("Samsung Browser", re.compile(r"SamsungBrowser/([\d.]+)")),
    ("Chrome", re.compile(r"(?:Chrome|CriOS)/([\d.]+)")),
    ("Safari", re.compile(r"Version/([\d.]+).*Safari/")),
]


def detect_browser(user_agent: str) -> Optional[Dict[str, Any]]:
    for name, pattern in _BROWSERS:
        match = pattern.search(user_agent)
        if match:
            return {"name": name, "version": match.group(1)}
    return None


def detect_device(user_agent: str) -> Dict[str, Any]:
    """Detect device type from user agent. Unknown agents count as desktop."""
    ua = user_agent.lower()
    if "ipad" in ua or "tablet" in ua:
        device_type = "tablet"
    elif "mobile" in ua or "android" in ua or "iphone" in ua:
        device_type = "mobile"
    else:
        device_type = "desktop"

    vendor = None
    if "iphone" in ua or "ipad" in ua or "macintosh" in ua:
        vendor = "Apple"
    elif "samsung" in ua or "sm-" in ua:
        vendor = "Samsung"
    return {"type": device_type, "vendor": vendor, "model": None}


def request_metadata(
    user_agent: Optional[str] = None,
    referrer: Optional[str] = None,
    ip: Optional[str] = None,
) -> Dict[str, Any]:
    """Build the metadata the HTTP layer knows about a submitter."""
    metadata: Dict[str, Any] = {}
    if user_agent:
        metadata["userAgent"] = user_agent
    if referrer:
        metadata["referrer"] = referrer
    if ip:
        metadata["ip"] = ip
    return metadata


def merge_metadata(payload_metadata: Dict[str, Any], context: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Merge request context into payload metadata. Payload values win."""
    merged = dict(context or {})
    merged.update({k: v for k, v in payload_metadata.items() if v not in (None, "")})

    user_agent = merged.get("userAgent")
    if user_agent and isinstance(user_agent, str):
        merged.setdefault("browser", detect_browser(user_agent))
        merged.setdefault("device", detect_device(user_agent))
    return merged
