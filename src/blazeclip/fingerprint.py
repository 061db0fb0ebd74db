"""Dedup identity for clipboard payloads.

Text is compared by its exact value (case and whitespace included). Images are
compared by the content hash the clipboard accessor supplied at capture time;
image bytes are never hashed here. A text payload never equals an image payload.
"""

from typing import NamedTuple

from blazeclip.models import ClipboardEntry, ContentType, ImagePayload, Payload


class Fingerprint(NamedTuple):
    kind: ContentType
    value: str


def fingerprint(payload: Payload) -> Fingerprint:
    if isinstance(payload, ImagePayload):
        return Fingerprint(ContentType.IMAGE, payload.content_hash)
    if isinstance(payload, str):
        return Fingerprint(ContentType.TEXT, payload)
    raise TypeError(f"unsupported clipboard payload: {type(payload).__name__}")


def entry_fingerprint(entry: ClipboardEntry) -> Fingerprint:
    return fingerprint(entry.payload)


def same_content(a: Payload, b: Payload) -> bool:
    return fingerprint(a) == fingerprint(b)
