"""Minimal multipart/form-data decoder for the newUpload endpoint.

The body is scanned as bytes so that the uploaded .tar.gz never goes through
a text round trip; only the header block of each part is decoded.
"""

import re
from dataclasses import dataclass
from typing import Dict, Optional

from pub_artifact_registry.domain.models.exceptions import ProtocolError

FILE_FIELD = "file"
SESSION_FIELD = "session"

# Fields that always carry binary content, whatever their bytes look like
BINARY_FIELDS = frozenset([FILE_FIELD])

_BOUNDARY_RE = re.compile(r'boundary=(?:"([^"]+)"|([^;\s]+))', re.IGNORECASE)
_NAME_RE = re.compile(r'(?:^|[;\s])name="([^"]*)"', re.IGNORECASE)
_FILENAME_RE = re.compile(r'(?:^|[;\s])filename="([^"]*)"', re.IGNORECASE)

_CRLF = b"\r\n"
_HEADER_END = b"\r\n\r\n"


@dataclass(frozen=True)
class MultipartField:
    name: str
    text: Optional[str] = None
    data: Optional[bytes] = None
    filename: Optional[str] = None

    @property
    def is_binary(self) -> bool:
        return self.data is not None

    def as_bytes(self) -> bytes:
        if self.data is not None:
            return self.data
        return self.text.encode("utf-8")


def extract_boundary(content_type: str) -> str:
    match = _BOUNDARY_RE.search(content_type or "")
    if match is None:
        raise ProtocolError(
            "Missing boundary in Content-Type", code="invalid_content_type"
        )
    return match.group(1) or match.group(2)


def decode_multipart(body: bytes, boundary: str) -> Dict[str, MultipartField]:
    """Split a multipart/form-data body into its named fields.

    Returns an empty mapping when the boundary never occurs in the body.
    Parts without a ``name`` in their Content-Disposition are skipped, and
    when a name repeats the first part wins.
    """
    delimiter = b"--" + boundary.encode("utf-8")
    fields: Dict[str, MultipartField] = {}

    position = body.find(delimiter)
    while position != -1:
        start = position + len(delimiter)
        if body[start:start + 2] == b"--":
            break
        if body[start:start + 2] == _CRLF:
            start += 2

        end = body.find(delimiter, start)
        if end == -1:
            break

        part = _decode_part(body[start:end])
        if part is not None and part.name not in fields:
            fields[part.name] = part
        position = end

    return fields


def _decode_part(part: bytes) -> Optional[MultipartField]:
    header_end = part.find(_HEADER_END)
    if header_end == -1:
        return None

    headers = _parse_headers(part[:header_end].decode("utf-8", errors="replace"))
    content = part[header_end + len(_HEADER_END):]
    if content.endswith(_CRLF):
        content = content[:-len(_CRLF)]

    disposition = headers.get("content-disposition", "")
    name_match = _NAME_RE.search(disposition)
    if name_match is None or not name_match.group(1):
        return None
    name = name_match.group(1)

    filename_match = _FILENAME_RE.search(disposition)
    filename = filename_match.group(1) if filename_match else None
    if name in BINARY_FIELDS or filename is not None:
        return MultipartField(name=name, data=content, filename=filename)

    try:
        text = content.decode("utf-8")
    except UnicodeDecodeError:
        return MultipartField(name=name, data=content)
    return MultipartField(name=name, text=text)


def _parse_headers(block: str) -> Dict[str, str]:
    headers = {}
    for line in block.split("\r\n"):
        key, sep, value = line.partition(":")
        if not sep:
            continue
        headers.setdefault(key.strip().lower(), value.strip())
    return headers
