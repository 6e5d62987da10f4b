import base64
import binascii
import re
from typing import Any

from bs4 import BeautifulSoup

TRUNCATION_MARKER = "\n\n[Email truncated to save processing time]"

_WHITESPACE = re.compile(r"\s+")
_FOOTERS = (
    re.compile(r"Unsubscribe.*$", re.IGNORECASE | re.DOTALL),
    re.compile(r"Click here to.*$", re.IGNORECASE | re.DOTALL),
    re.compile(r"View this email in your browser.*$", re.IGNORECASE | re.DOTALL),
)


def decode_body_data(data: str | None) -> str:
    """Decode Gmail's URL-safe base64 body data, tolerating missing padding."""
    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, ValueError, UnicodeEncodeError):
        return ""
    return raw.decode("utf-8", errors="replace")


def _part_data(part: dict[str, Any]) -> str | None:
    body = part.get("body") or {}
    return body.get("data")


def extract_body(payload: dict[str, Any] | None) -> str:
    """Pick the best text body from a (possibly multipart, nested) payload.

    Order: direct body data, first ``text/plain`` part, first ``text/html``
    part, then the first nested multipart that yields anything.
    """
    if not payload:
        return ""

    direct = _part_data(payload)
    if direct:
        return decode_body_data(direct)

    parts = payload.get("parts") or []
    for mime_type in ("text/plain", "text/html"):
        part = next((p for p in parts if p.get("mimeType") == mime_type), None)
        if part is not None:
            data = _part_data(part)
            if data:
                return decode_body_data(data)

    for part in parts:
        if part.get("parts"):
            nested = extract_body(part)
            if nested:
                return nested
    return ""


def clean_body(body: str) -> str:
    soup = BeautifulSoup(body, "html.parser")
    for tag in soup(["style", "script", "head"]):
        tag.decompose()

    text = soup.get_text(separator=" ", strip=True)
    text = _WHITESPACE.sub(" ", text)
    for footer in _FOOTERS:
        text = footer.sub("", text)
    return text.strip()


def truncate_body(body: str, max_chars: int) -> str:
    if len(body) <= max_chars:
        return body
    return body[:max_chars] + TRUNCATION_MARKER


def get_header(headers: list[dict[str, str]] | None, name: str) -> str:
    wanted = name.lower()
    for header in headers or []:
        if str(header.get("name", "")).lower() == wanted:
            return str(header.get("value") or "")
    return ""
