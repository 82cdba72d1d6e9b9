"""Signature based MIME detection for the start of a byte stream."""

SNIFF_LEN = 512

OCTET_STREAM = "application/octet-stream"
TEXT_PLAIN = "text/plain; charset=utf-8"

# (prefix, mime type); checked in order after leading-whitespace HTML probes
_SIGNATURES = (
    (b"%PDF-", "application/pdf"),
    (b"%!PS-Adobe-", "application/postscript"),
    (b"\xfe\xff", "text/plain; charset=utf-16be"),
    (b"\xff\xfe", "text/plain; charset=utf-16le"),
    (b"\xef\xbb\xbf", TEXT_PLAIN),
    (b"\x00\x00\x01\x00", "image/x-icon"),
    (b"\x00\x00\x02\x00", "image/x-icon"),
    (b"BM", "image/bmp"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
    (b"\x89PNG\x0d\x0a\x1a\x0a", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"FORM", "audio/aiff"),
    (b"ID3", "audio/mpeg"),
    (b"OggS\x00", "application/ogg"),
    (b"MThd\x00\x00\x00\x06", "audio/midi"),
    (b"\x1a\x45\xdf\xa3", "video/webm"),
    (b"\x52\x61\x72\x20\x1a\x07\x00", "application/x-rar-compressed"),
    (b"\x52\x61\x72\x21\x1a\x07\x00", "application/x-rar-compressed"),
    (b"\x00\x61\x73\x6d", "application/wasm"),
    (b"PK\x03\x04", "application/zip"),
    (b"\x1f\x8b\x08", "application/x-gzip"),
    (b"wOFF", "font/woff"),
    (b"wOF2", "font/woff2"),
    (b"OTTO", "font/otf"),
    (b"\x00\x01\x00\x00", "font/ttf"),
)

_HTML_TAGS = (
    b"<!DOCTYPE HTML", b"<HTML", b"<HEAD", b"<SCRIPT", b"<IFRAME", b"<H1", b"<DIV",
    b"<FONT", b"<TABLE", b"<A", b"<STYLE", b"<TITLE", b"<B", b"<BODY", b"<BR",
    b"<P", b"<!--",
)

_WHITESPACE = b"\t\n\x0c\r "
# bytes that never appear in plain text
_BINARY = frozenset(list(range(0x00, 0x09)) + [0x0B] + list(range(0x0E, 0x1C)) + [0x7F])


def _html(data: bytes) -> bool:
    upper = data.upper()
    for tag in _HTML_TAGS:
        if upper.startswith(tag) and len(data) > len(tag) and data[len(tag)] in b" >":
            return True
    return False


def _riff(data: bytes):
    if data[:4] != b"RIFF" or len(data) < 12:
        return None
    return {
        b"WAVE": "audio/wave",
        b"AVI ": "video/avi",
        b"WEBP": "image/webp",
    }.get(data[8:12])


def _mp4(data: bytes) -> bool:
    if len(data) < 12:
        return False
    box_size = int.from_bytes(data[:4], "big")
    if len(data) < box_size or box_size % 4 != 0 or data[4:8] != b"ftyp":
        return False
    for start in range(8, box_size, 4):
        if start == 12:
            continue  # minor version
        if data[start:start + 3] == b"mp4":
            return True
    return False


def detect_content_type(data: bytes) -> str:
    """Guess the MIME type of ``data`` from at most its first 512 bytes.

    Always returns a valid type, falling back to ``application/octet-stream``.
    """
    data = data[:SNIFF_LEN]
    stripped = data.lstrip(_WHITESPACE)
    if _html(stripped):
        return "text/html; charset=utf-8"
    if stripped.startswith(b"<?xml"):
        return "text/xml; charset=utf-8"
    for prefix, mime in _SIGNATURES:
        if data.startswith(prefix):
            return mime
    mime = _riff(data)
    if mime:
        return mime
    if _mp4(data):
        return "video/mp4"
    if any(b in _BINARY for b in data):
        return OCTET_STREAM
    return TEXT_PLAIN
