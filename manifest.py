"""Chunk manifest codec.

A manifest is an ordinary stored object whose payload lists, in order, the
references of the chunks making up one logical file::

    tgstate-blob <filename> <ref1> <ref2> ...

Fields are whitespace separated. There is no escaping and no checksum: a
filename containing whitespace breaks the manifest, and a reordered or
corrupted chunk is only noticed when the download fails.
"""
import re
from typing import List, Sequence, Tuple

MANIFEST_MAGIC = b"tgstate-blob"   # exactly 12 bytes
MANIFEST_SUFFIX = ".tgstate"

_WHITESPACE_RE = re.compile(r"\s")


class ManifestError(ValueError):
    pass


def has_whitespace(token: str) -> bool:
    return bool(_WHITESPACE_RE.search(token))


def encode(filename: str, chunk_refs: Sequence[str]) -> bytes:
    if not chunk_refs:
        raise ManifestError("A manifest needs at least one chunk reference")
    if not filename or has_whitespace(filename):
        raise ManifestError(f"Filename cannot be stored in a manifest: {filename!r}")
    for ref in chunk_refs:
        if not ref or has_whitespace(ref):
            raise ManifestError(f"Invalid chunk reference: {ref!r}")
    return b" ".join([MANIFEST_MAGIC, filename.encode("utf-8")] + [ref.encode("ascii") for ref in chunk_refs])


def is_manifest(window: bytes) -> bool:
    # prefix sniff only; whatever follows the magic is not inspected
    return window[:len(MANIFEST_MAGIC)] == MANIFEST_MAGIC


def decode(payload) -> Tuple[str, List[str]]:
    if isinstance(payload, (bytes, bytearray)):
        payload = bytes(payload).decode("utf-8", errors="replace")
    tokens = payload.split()
    if len(tokens) < 2:
        raise ManifestError(f"Malformed manifest: expected at least 2 fields, got {len(tokens)}")
    return tokens[1], tokens[2:]
