"""URL extraction and snippet redaction for alerts.

The snippet is the only part of a message that leaves the device (Stage 3
request) or shows up in an alert list, so contact details and codes are
masked before it is cut to length. The full message is kept separately
on the alert record.
"""

import re
from typing import List, Optional

from guardian.models import AlertOrigin
from guardian.normalizer import (
    EMAIL_RE,
    LONG_DIGITS_RE,
    OTP_CONTEXT_RE,
    PHONE_RE,
    SHORT_CODE_RE,
)


URL_PATTERN = re.compile(
    r'(https?://[^\s<>"{}|\\^`\[\]]+|www\.[^\s<>"{}|\\^`\[\]]+)',
    re.IGNORECASE,
)
_URL_TRAILING = ".,);:!?'\""

NOTIFICATION_SNIPPET_CHARS: int = 100
SCAN_SNIPPET_CHARS: int = 500
ELLIPSIS = "..."


def extract_urls(text: str) -> List[str]:
    """All http(s):// and www. links, with trailing punctuation stripped."""
    if not text:
        return []
    urls = []
    for match in URL_PATTERN.finditer(text):
        url = match.group(0).rstrip(_URL_TRAILING)
        if url:
            urls.append(url)
    return urls


def extract_first_url(text: str) -> Optional[str]:
    urls = extract_urls(text)
    return urls[0] if urls else None


def redact(text: str) -> str:
    """Mask emails, phone numbers, long digit runs and one-time codes."""
    if not text:
        return ""
    x = EMAIL_RE.sub("<EMAIL>", text)
    x = PHONE_RE.sub("<PHONE>", x)
    x = LONG_DIGITS_RE.sub("<NUM>", x)
    if OTP_CONTEXT_RE.search(x):
        x = SHORT_CODE_RE.sub("<OTP>", x)
    return x


def make_snippet(text: str, origin: AlertOrigin) -> str:
    """
    Redacted preview sized per origin: notifications get 100 chars plus an
    ellipsis when cut, image and manual scans get up to 500 chars.
    """
    redacted = redact((text or "").strip())
    if AlertOrigin(origin) is AlertOrigin.NOTIFICATION:
        if len(redacted) > NOTIFICATION_SNIPPET_CHARS:
            return redacted[:NOTIFICATION_SNIPPET_CHARS] + ELLIPSIS
        return redacted
    return redacted[:SCAN_SNIPPET_CHARS]
