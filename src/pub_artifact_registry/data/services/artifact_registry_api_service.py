import json
import logging
from io import BytesIO
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote, unquote

import requests

from pub_artifact_registry.domain.models.exceptions import UpstreamError

logger = logging.getLogger(__name__)

API_ROOT = "https://artifactregistry.googleapis.com"


def _segment(value: str) -> str:
    return quote(value, safe="")


class ArtifactRegistryService:
    """Service layer for making REST API requests to Google Cloud Artifact Registry.

    Packages are stored as generic artifacts: one Artifact Registry package per
    Dart package, one Artifact Registry version per package version, and a
    single ``<name>-<version>.tar.gz`` file inside each version.
    """

    def __init__(
        self,
        project_id: str,
        location: str,
        repository: str,
        token_provider: Callable[[], str],
        session: Optional[requests.Session] = None,
        timeout: float = 30,
    ):
        self.project_id = project_id
        self.location = location
        self.repository = repository
        self.token_provider = token_provider
        self.session = session or requests.Session()
        self.timeout = timeout

        self.parent = f"projects/{project_id}/locations/{location}/repositories/{repository}"
        self.base_url = f"{API_ROOT}/v1/{self.parent}"

    def _get_headers(self) -> Dict[str, str]:
        """Get standard headers for API requests"""
        return {"Authorization": f"Bearer {self.token_provider()}"}

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        headers = self._get_headers()
        headers.update(kwargs.pop("headers", {}))
        try:
            return self.session.request(
                method, url, headers=headers, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            raise UpstreamError(f"Artifact Registry request failed: {e}") from e

    @staticmethod
    def _raise_for_status(response: requests.Response, message: str) -> None:
        if response.status_code in (200, 201):
            return
        raise UpstreamError(
            message, upstream_status=response.status_code, details=response.text[:500]
        )

    def _version_url(self, package_name: str, version: str) -> str:
        return f"{self.base_url}/packages/{_segment(package_name)}/versions/{_segment(version)}"

    def list_package_versions(self, package_name: str) -> List[str]:
        """List all version labels of a package; empty when the package is unknown"""
        logger.info("Listing versions for package: %s", package_name)

        url = f"{self.base_url}/packages/{_segment(package_name)}/versions"
        params: Dict[str, Any] = {"pageSize": 1000}
        versions: List[str] = []

        while True:
            response = self._request("GET", url, params=params)
            if response.status_code == 404:
                logger.info("Package not found upstream: %s", package_name)
                return []
            self._raise_for_status(response, "Failed to list package versions")

            data = response.json()
            for version in data.get("versions", []):
                label = unquote(version.get("name", "").rsplit("/", 1)[-1])
                if label and label not in versions:
                    versions.append(label)

            page_token = data.get("nextPageToken")
            if not page_token:
                break
            params = {"pageSize": 1000, "pageToken": page_token}

        logger.info("Found %d versions for %s", len(versions), package_name)
        return versions

    def get_version_details(self, package_name: str, version: str) -> Optional[Dict[str, Any]]:
        """Artifact Registry version resource, or None if the version does not exist"""
        response = self._request("GET", self._version_url(package_name, version))
        if response.status_code == 404:
            return None
        self._raise_for_status(response, "Failed to get package version")
        return response.json()

    def package_version_exists(self, package_name: str, version: str) -> bool:
        return self.get_version_details(package_name, version) is not None

    def download_package_file(self, package_name: str, version: str, filename: str) -> bytes:
        """Download a package file from Artifact Registry"""
        logger.info("Downloading artifact: %s@%s/%s", package_name, version, filename)

        file_id = _segment(f"{package_name}:{version}:{filename}")
        download_url = f"{API_ROOT}/download/v1/{self.parent}/files/{file_id}:download"

        response = self._request("GET", download_url, params={"alt": "media"})
        self._raise_for_status(response, f"Failed to download {filename}")

        logger.info(
            "Downloaded artifact: %s@%s/%s (%d bytes)",
            package_name,
            version,
            filename,
            len(response.content),
        )
        return response.content

    def upload_package(
        self, package_data: bytes, package_name: str, version: str, filename: str
    ) -> None:
        """Upload package to Artifact Registry as a generic artifact"""
        logger.info("Uploading artifact: %s@%s", package_name, version)

        upload_url = f"{API_ROOT}/upload/v1/{self.parent}/genericArtifacts:create"

        meta = {"filename": filename, "package_id": package_name, "version_id": version}
        files = {
            "meta": (None, json.dumps(meta), "application/json"),
            "blob": (filename, BytesIO(package_data), "application/gzip"),
        }

        response = self._request("POST", upload_url, files=files, params={"alt": "json"})
        self._raise_for_status(response, "Failed to upload artifact")

        logger.info("Uploaded artifact: %s@%s", package_name, version)
