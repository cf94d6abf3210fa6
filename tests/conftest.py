import io
import tarfile

import pytest

from pub_artifact_registry.api.api import create_app
from pub_artifact_registry.domain.models.exceptions import UpstreamError
from pub_artifact_registry.domain.models.models import ServerConfig

BOUNDARY = "dart-http-boundary-WnF9k2pQ"


def build_archive(pubspec=None, files=None):
    """In-memory .tar.gz shaped like the ones `dart pub publish` uploads"""
    members = {}
    if pubspec is not None:
        members["pubspec.yaml"] = pubspec
    members.update(files or {})

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for path, content in members.items():
            data = content.encode("utf-8") if isinstance(content, str) else content
            info = tarfile.TarInfo(path)
            info.size = len(data)
            tar.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def build_pubspec(name="demo", version="1.0.0", **extra):
    lines = [f"name: {name}", f"version: {version}"]
    lines.extend(f"{key}: {value}" for key, value in extra.items())
    return "\n".join(lines) + "\n"


def build_multipart(fields, boundary=BOUNDARY):
    body = b""
    for name, value in fields.items():
        if isinstance(value, bytes):
            headers = (
                f'Content-Disposition: form-data; name="{name}"; filename="package.tar.gz"\r\n'
                "Content-Type: application/octet-stream\r\n"
            )
        else:
            headers = f'Content-Disposition: form-data; name="{name}"\r\n'
            value = value.encode("utf-8")
        body += f"--{boundary}\r\n{headers}\r\n".encode("utf-8") + value + b"\r\n"
    body += f"--{boundary}--\r\n".encode("utf-8")
    return body


class FakeArtifactService:
    """Artifact Registry stand-in keeping files in memory"""

    def __init__(self):
        self.files = {}
        self.uploads = []
        self.downloads = []
        self.upload_error = None
        self.list_error = None

    def add(self, package_name, version, data):
        self.files[(package_name, version)] = data

    def list_package_versions(self, package_name):
        if self.list_error is not None:
            raise self.list_error
        return [version for (name, version) in self.files if name == package_name]

    def package_version_exists(self, package_name, version):
        return (package_name, version) in self.files

    def download_package_file(self, package_name, version, filename):
        self.downloads.append((package_name, version, filename))
        if (package_name, version) not in self.files:
            raise UpstreamError(f"{filename} not found", upstream_status=404)
        return self.files[(package_name, version)]

    def upload_package(self, package_data, package_name, version, filename):
        if self.upload_error is not None:
            raise self.upload_error
        self.uploads.append((package_name, version, filename))
        self.files[(package_name, version)] = package_data


@pytest.fixture
def make_archive():
    return build_archive


@pytest.fixture
def make_pubspec():
    return build_pubspec


@pytest.fixture
def make_multipart():
    return build_multipart


@pytest.fixture
def artifact_service():
    return FakeArtifactService()


@pytest.fixture
def config():
    return ServerConfig(project_id="test-project", listing_workers=1)


@pytest.fixture
def app(config, artifact_service):
    app = create_app(config, artifact_service=artifact_service)
    app.config.update(TESTING=True)
    return app


@pytest.fixture
def client(app):
    return app.test_client()
