import logging
import threading
from typing import Optional
from urllib.parse import quote

from cachetools import LRUCache

from pub_artifact_registry.data.services.artifact_registry_api_service import (
    ArtifactRegistryService,
)
from pub_artifact_registry.domain.archive import (
    calculate_sha256,
    extract_pubspec_from_archive,
    parse_package_archive,
)
from pub_artifact_registry.domain.models.exceptions import (
    ArchiveError,
    ConflictError,
    PackageNotFoundError,
    UpstreamError,
)
from pub_artifact_registry.domain.models.models import (
    Package,
    PackageArchive,
    PackageMetadata,
    PackageVersion,
    archive_filename,
)
from pub_artifact_registry.domain.versions import aggregate_package

logger = logging.getLogger(__name__)


class PackageRepository:
    """Repository layer that handles business logic and domain model conversion"""

    def __init__(
        self,
        artifact_service: ArtifactRegistryService,
        max_workers: int = 4,
        cache_size: int = 512,
    ):
        self.artifact_service = artifact_service
        self.max_workers = max_workers
        # Published versions are never overwritten, so entries never go stale
        self.metadata_cache = LRUCache(maxsize=cache_size) if cache_size > 0 else None
        self._cache_lock = threading.Lock()

    def get_package(self, package_name: str, base_url: str) -> Package:
        """Get complete package information with all versions"""
        logger.info("Getting package: %s", package_name)

        version_labels = self.artifact_service.list_package_versions(package_name)

        return aggregate_package(
            package_name,
            version_labels,
            lambda version: self._load_package_version(package_name, version, base_url),
            max_workers=self.max_workers,
        )

    def get_package_version(
        self, package_name: str, version: str, base_url: str
    ) -> PackageVersion:
        logger.info("Getting package version: %s@%s", package_name, version)
        try:
            return self._load_package_version(package_name, version, base_url)
        except UpstreamError as e:
            if e.upstream_status == 404:
                raise PackageNotFoundError(
                    f'Package "{package_name}" version "{version}" not found'
                ) from e
            raise
        except ArchiveError as e:
            raise UpstreamError(
                f"Stored archive for {package_name}@{version} is unreadable: {e.message}"
            ) from e

    def parse_package_archive(self, archive_data: bytes) -> PackageArchive:
        return parse_package_archive(archive_data)

    def publish_package(self, archive: PackageArchive) -> None:
        """Upload an archive unless that version is already in the registry"""
        logger.info("Publishing package: %s@%s", archive.package_name, archive.version)

        if self.artifact_service.package_version_exists(archive.package_name, archive.version):
            raise ConflictError(
                f"Version {archive.version} of package {archive.package_name} already exists"
            )

        self.artifact_service.upload_package(
            archive.data, archive.package_name, archive.version, archive.filename
        )
        self._cache_metadata(
            archive.package_name,
            archive.version,
            PackageMetadata(pubspec=archive.pubspec, archive_sha256=archive.archive_sha256),
        )

        logger.info(
            "Successfully published package: %s@%s", archive.package_name, archive.version
        )

    def download_package_archive(self, package_name: str, version: str) -> bytes:
        logger.info("Downloading package archive: %s@%s", package_name, version)
        try:
            return self.artifact_service.download_package_file(
                package_name, version, archive_filename(package_name, version)
            )
        except UpstreamError as e:
            if e.upstream_status == 404:
                raise PackageNotFoundError(
                    f'Package "{package_name}" version "{version}" not found'
                ) from e
            raise

    def _load_package_version(
        self, package_name: str, version: str, base_url: str
    ) -> PackageVersion:
        metadata = self._get_package_metadata(package_name, version)
        return PackageVersion(
            version=version,
            archive_url=self._get_download_url(base_url, package_name, version),
            archive_sha256=metadata.archive_sha256,
            pubspec=metadata.pubspec,
        )

    def _get_package_metadata(self, package_name: str, version: str) -> PackageMetadata:
        """Get package metadata including pubspec and SHA256"""
        metadata = self._cached_metadata(package_name, version)
        if metadata is not None:
            return metadata

        package_data = self.artifact_service.download_package_file(
            package_name, version, archive_filename(package_name, version)
        )
        metadata = PackageMetadata(
            pubspec=extract_pubspec_from_archive(package_data),
            archive_sha256=calculate_sha256(package_data),
        )
        logger.debug(
            "Read pubspec of %s@%s from %d byte archive", package_name, version, len(package_data)
        )
        self._cache_metadata(package_name, version, metadata)
        return metadata

    def _cached_metadata(self, package_name: str, version: str) -> Optional[PackageMetadata]:
        if self.metadata_cache is None:
            return None
        with self._cache_lock:
            return self.metadata_cache.get((package_name, version))

    def _cache_metadata(self, package_name: str, version: str, metadata: PackageMetadata) -> None:
        if self.metadata_cache is None:
            return
        with self._cache_lock:
            self.metadata_cache[(package_name, version)] = metadata

    @staticmethod
    def _get_download_url(base_url: str, package_name: str, version: str) -> str:
        """Generate download URL for a package version"""
        return (
            f"{base_url}/packages/{quote(package_name, safe='')}"
            f"/versions/{quote(version, safe='')}.tar.gz"
        )
