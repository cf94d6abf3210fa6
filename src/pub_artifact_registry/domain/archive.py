import hashlib
import posixpath
import tarfile
import zlib
from datetime import date, datetime
from io import BytesIO
from typing import Any, Dict, List, Optional

import yaml

from pub_artifact_registry.domain.models.exceptions import ArchiveError
from pub_artifact_registry.domain.models.models import PackageArchive

PUBSPEC_FILENAME = "pubspec.yaml"


def parse_package_archive(archive_data: bytes) -> PackageArchive:
    """Read name, version and pubspec out of an uploaded .tar.gz archive.

    Raises ArchiveError for anything that makes the archive unusable: not a
    gzip/tar stream, no pubspec.yaml, unparseable YAML, or a pubspec without
    string ``name`` and ``version`` entries.
    """
    pubspec = extract_pubspec_from_archive(archive_data)

    package_name = require_string(pubspec, "name")
    version = require_string(pubspec, "version")

    return PackageArchive(
        package_name=package_name,
        version=version,
        pubspec=pubspec,
        data=bytes(archive_data),
        archive_sha256=calculate_sha256(archive_data),
    )


def extract_pubspec_from_archive(archive_data: bytes) -> Dict[str, Any]:
    """Extract pubspec.yaml from the tar.gz archive"""
    try:
        with tarfile.open(fileobj=BytesIO(archive_data), mode="r:gz") as tar:
            member = _find_pubspec_member(tar.getmembers())
            if member is None:
                raise ArchiveError(f"{PUBSPEC_FILENAME} not found in archive")
            pubspec_file = tar.extractfile(member)
            if pubspec_file is None:
                raise ArchiveError(f"{PUBSPEC_FILENAME} in archive is not a regular file")
            raw = pubspec_file.read()
    except (tarfile.TarError, OSError, EOFError, zlib.error) as e:
        raise ArchiveError(f"Invalid package archive: {e}") from e

    try:
        content = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ArchiveError(f"{PUBSPEC_FILENAME} is not valid UTF-8") from e

    try:
        document = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ArchiveError(f"Failed to parse {PUBSPEC_FILENAME}: {e}") from e

    if not isinstance(document, dict):
        raise ArchiveError(f"{PUBSPEC_FILENAME} must contain a mapping")

    return to_json_value(document)


def _find_pubspec_member(members: List[tarfile.TarInfo]) -> Optional[tarfile.TarInfo]:
    # The package's own pubspec sits at the archive root; nested ones belong to
    # examples or fixtures shipped inside the package.
    candidates = []
    for member in members:
        if not member.isfile():
            continue
        path = posixpath.normpath(member.name.lstrip("/"))
        if path == PUBSPEC_FILENAME or path.endswith("/" + PUBSPEC_FILENAME):
            candidates.append((path.count("/"), member))

    if not candidates:
        return None
    candidates.sort(key=lambda item: item[0])
    return candidates[0][1]


def to_json_value(value: Any) -> Any:
    """Convert a YAML document into plain JSON-compatible values"""
    if isinstance(value, dict):
        return {str(key): to_json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_value(item) for item in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


def require_string(pubspec: Dict[str, Any], key: str) -> str:
    value = pubspec.get(key)
    if value is None:
        raise ArchiveError(f"Invalid pubspec: missing {key}")
    if not isinstance(value, str):
        raise ArchiveError(
            f"Invalid pubspec: {key} must be a string, got {type(value).__name__}"
        )
    if not value.strip():
        raise ArchiveError(f"Invalid pubspec: {key} is empty")
    return value


def calculate_sha256(data: bytes) -> str:
    """Calculate SHA256 hash of data"""
    return hashlib.sha256(data).hexdigest()
