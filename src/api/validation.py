import ipaddress
from urllib.parse import urlparse

from src.core.exceptions import AppError


def validate_path_segment(value: str, name: str) -> None:
    if not value or ".." in value or "/" in value:
        raise AppError(status_code=400, detail=f"Invalid {name}")


def _is_blocked_ip(hostname: str) -> bool:
    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return ip.is_private or ip.is_loopback or ip.is_link_local or ip.is_reserved or ip.is_multicast or ip.is_unspecified


def validate_outbound_url(url: str) -> None:
    """Reject URLs the upload relay must never POST to (non-http schemes, localhost, private ranges)."""
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    if scheme not in ("http", "https"):
        raise AppError(status_code=400, detail="Invalid url")
    if not parsed.hostname:
        raise AppError(status_code=400, detail="Invalid url")
    hostname = parsed.hostname
    if hostname == "localhost" or hostname.endswith(".localhost"):
        raise AppError(status_code=400, detail="Invalid url")
    if _is_blocked_ip(hostname):
        raise AppError(status_code=400, detail="Invalid url")
