"""
normalizer.py — Training-Compatible Text Canonicalization
==========================================================

The char-CNN only ever saw text that went through this exact transform,
so any drift here silently costs accuracy. Keep the order of the steps.

Pipeline (single pass):
    1. Unicode NFKC
    2. Collapse whitespace, trim
    3. URL → <URL>, email → <EMAIL>, phone → <PHONE>, 8+ digits → <NUM>,
       RM amounts → RM <AMOUNT>
    4. Bank / telco / courier names → <BANK> / <TELCO> / <COURIER>
    5. 4-8 digit codes → <OTP>, only when an OTP context word is present
    6. Remaining 4-8 digit runs → <NUM>, only when a reference word is present

normalize() repeats the pass until the text is stable so that
normalize(normalize(x)) == normalize(x).
"""

import re
import unicodedata
from typing import List, Tuple


URL_RE = re.compile(r'\b(?:https?://|www\.)?[a-zA-Z0-9-]+\.[a-zA-Z]{2,}(?:/[^\s]*)?', re.IGNORECASE)
EMAIL_RE = re.compile(r'\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b', re.IGNORECASE)
PHONE_RE = re.compile(r'(?<!\w)(?:\+?\d[\d\-\s]{6,}\d)(?!\w)')
LONG_DIGITS_RE = re.compile(r'\b\d{8,}\b')
MONEY_RE = re.compile(r'\bRM\s*\d+(?:\.\d{1,2})?\b', re.IGNORECASE)

OTP_CONTEXT_RE = re.compile(r'\b(otp|tac|code|verification|verify|kod|pin|验证码|驗證碼)\b', re.IGNORECASE)
REF_CONTEXT_RE = re.compile(r'\b(ref|reference|txn|transaction|receipt|resit|rujukan)\b', re.IGNORECASE)
SHORT_CODE_RE = re.compile(r'\b\d{4,8}\b')

_WHITESPACE_RE = re.compile(r'\s+')

# Organisation names as they appeared in the training distribution.
# Matched as case-insensitive substrings, same as at training time.
BANKS = (
    "maybank", "cimb", "public bank", "rhb", "hong leong",
    "ambank", "bank islam", "bsn", "uob", "ocbc",
)
TELCOS = ("celcom", "digi", "maxis", "unifi", "tm", "yes")
COURIERS = (
    "j&t", "jt", "poslaju", "gdex", "dhl",
    "ninja van", "flash", "shopee express", "spx",
)

ORG_PLACEHOLDERS: List[Tuple[str, Tuple[str, ...]]] = [
    ("<BANK>", BANKS),
    ("<TELCO>", TELCOS),
    ("<COURIER>", COURIERS),
]

_ORG_PATTERNS = [
    (placeholder, name, re.compile(re.escape(name), re.IGNORECASE))
    for placeholder, names in ORG_PLACEHOLDERS
    for name in names
]

# Safety net; real input settles in two or three passes
MAX_PASSES: int = 8


def normalize_once(text: str) -> str:
    """One pass of the training-time transform."""
    if not text:
        return ""

    x = unicodedata.normalize("NFKC", text)
    x = _WHITESPACE_RE.sub(" ", x).strip()

    x = URL_RE.sub("<URL>", x)
    x = EMAIL_RE.sub("<EMAIL>", x)
    x = PHONE_RE.sub("<PHONE>", x)
    x = LONG_DIGITS_RE.sub("<NUM>", x)
    x = MONEY_RE.sub("RM <AMOUNT>", x)

    for placeholder, name, pattern in _ORG_PATTERNS:
        if name in x.lower():
            x = pattern.sub(placeholder, x)

    if OTP_CONTEXT_RE.search(x):
        x = SHORT_CODE_RE.sub("<OTP>", x)

    if REF_CONTEXT_RE.search(x):
        x = SHORT_CODE_RE.sub("<NUM>", x)

    return x


def normalize(text: str) -> str:
    """
    Canonicalize text for the classifier. Pure and total: never raises,
    empty input gives empty output.
    """
    if not text:
        return ""
    current = normalize_once(text)
    for _ in range(MAX_PASSES):
        following = normalize_once(current)
        if following == current:
            break
        current = following
    return current
