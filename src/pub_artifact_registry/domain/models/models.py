import os
from dataclasses import dataclass
from typing import Dict, Any, Optional, List
from datetime import datetime


@dataclass(frozen=True)
class PackageVersion:
    """Domain model for a package version"""

    version: str
    archive_url: str
    pubspec: Dict[str, Any]
    archive_sha256: Optional[str] = None
    retracted: bool = False

    def to_json(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "version": self.version,
            "archive_url": self.archive_url,
            "pubspec": self.pubspec,
        }
        if self.archive_sha256 is not None:
            data["archive_sha256"] = self.archive_sha256
        if self.retracted:
            data["retracted"] = True
        return data


@dataclass(frozen=True)
class PackageMetadata:
    """Domain model for package metadata"""

    pubspec: Dict[str, Any]
    archive_sha256: str


@dataclass
class Package:
    """Domain model for a complete package with all versions"""

    name: str
    versions: List[PackageVersion]
    latest: Optional[PackageVersion] = None
    is_discontinued: bool = False
    replaced_by: Optional[str] = None
    advisories_updated: Optional[datetime] = None

    def __post_init__(self):
        if self.versions and (self.latest is None or self.latest not in self.versions):
            raise ValueError(f"Package {self.name}: latest must be one of its versions")

    def to_json(self) -> Dict[str, Any]:
        """Pub repository spec v2 "list all versions of a package" body"""
        data: Dict[str, Any] = {"name": self.name}
        if self.latest is not None:
            data["latest"] = self.latest.to_json()
        data["versions"] = [version.to_json() for version in self.versions]

        if self.is_discontinued:
            data["isDiscontinued"] = True
            if self.replaced_by:
                data["replacedBy"] = self.replaced_by

        if self.advisories_updated:
            data["advisoriesUpdated"] = self.advisories_updated.isoformat()

        return data


@dataclass(frozen=True)
class PackageArchive:
    """An uploaded package archive together with what was read from its pubspec"""

    package_name: str
    version: str
    pubspec: Dict[str, Any]
    data: bytes
    archive_sha256: str

    @property
    def filename(self) -> str:
        return archive_filename(self.package_name, self.version)


@dataclass
class UploadSession:
    """Archive accepted by the upload step, waiting for newUploadFinish"""

    session_id: str
    archive: PackageArchive
    created_at: float = 0.0

    @property
    def package_name(self) -> str:
        return self.archive.package_name

    @property
    def version(self) -> str:
        return self.archive.version


@dataclass
class UploadInfo:
    """Domain model for package upload information"""

    url: str
    fields: Dict[str, str]

    def to_json(self) -> Dict[str, Any]:
        return {"url": self.url, "fields": self.fields}


@dataclass
class UploadSuccess:
    message: str

    def to_json(self) -> Dict[str, Any]:
        return {"success": {"message": self.message}}


@dataclass
class ErrorResponse:
    code: str
    message: str

    def to_json(self) -> Dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message}}


def archive_filename(package_name: str, version: str) -> str:
    """Name of the file stored in Artifact Registry for one package version"""
    return f"{package_name}-{version}.tar.gz"


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ServerConfig:
    """Process configuration, read once at startup"""

    project_id: str
    location: str = "europe-west1"
    repository: str = "dart-package-repository"
    host: str = "0.0.0.0"
    port: int = 8080
    base_url: Optional[str] = None
    session_ttl_seconds: int = 3600
    manifest_cache_size: int = 512
    listing_workers: int = 4
    upstream_timeout: int = 30
    require_publish_auth: bool = False
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ServerConfig":
        project_id = os.environ.get("PROJECT_ID")
        if not project_id:
            raise ValueError("PROJECT_ID environment variable is required")

        base_url = os.environ.get("BASE_URL")
        return cls(
            project_id=project_id,
            location=os.environ.get("LOCATION", "europe-west1"),
            repository=os.environ.get("REPOSITORY", "dart-package-repository"),
            host=os.environ.get("HOST", "0.0.0.0"),
            port=_env_int("PORT", 8080),
            base_url=base_url.rstrip("/") if base_url else None,
            session_ttl_seconds=_env_int("SESSION_TTL_SECONDS", 3600),
            manifest_cache_size=_env_int("MANIFEST_CACHE_SIZE", 512),
            listing_workers=_env_int("LISTING_WORKERS", 4),
            upstream_timeout=_env_int("UPSTREAM_TIMEOUT", 30),
            require_publish_auth=_env_bool("REQUIRE_PUBLISH_AUTH", False),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
