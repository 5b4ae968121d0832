"""Raw-text assembly for the two passive event sources.

Notification listener: title, text, big text, sub text and text lines are
joined with newlines (blank parts dropped). Our own warnings are ignored
so a posted warning never triggers another triage.

Image scan: OCR text and decoded barcode / QR values are joined the same way.
"""

from typing import Iterable, Optional

from guardian.models import AlertOrigin, CollectedEvent, NotificationEvent, ScanEvent

UNKNOWN_SENDER = "Unknown"
GALLERY_SENDER = "Gallery"


def _join_non_blank(parts: Iterable[Optional[str]]) -> str:
    return "\n".join(p for p in parts if p and p.strip()).strip()


def assemble_notification_text(
    title: Optional[str] = None,
    text: Optional[str] = None,
    big_text: Optional[str] = None,
    sub_text: Optional[str] = None,
    lines: Optional[Iterable[str]] = None,
) -> str:
    joined_lines = "\n".join(str(line) for line in (lines or []))
    return _join_non_blank([title, text, big_text, sub_text, joined_lines])


def assemble_scan_text(ocr_text: Optional[str] = None, barcode_values: Optional[Iterable[str]] = None) -> str:
    qr_text = "\n".join(v for v in (barcode_values or []) if v)
    return f"{ocr_text or ''}\n{qr_text}".strip()


def from_notification(event: NotificationEvent, own_package: Optional[str] = None) -> Optional[CollectedEvent]:
    """Build a pipeline event, or None for our own / empty notifications."""
    if own_package and event.packageName == own_package:
        return None

    combined = assemble_notification_text(
        event.title, event.text, event.bigText, event.subText, event.lines
    )
    if not combined:
        return None

    return CollectedEvent(
        raw_text=combined,
        origin=AlertOrigin.NOTIFICATION,
        sender=event.title or UNKNOWN_SENDER,
        full_message=event.text or combined,
    )


def from_scan(event: ScanEvent) -> Optional[CollectedEvent]:
    full_text = assemble_scan_text(event.ocrText, event.barcodeValues)
    if not full_text:
        return None
    return CollectedEvent(
        raw_text=full_text,
        origin=AlertOrigin.IMAGE_SCAN,
        sender=GALLERY_SENDER,
        full_message=full_text,
    )
