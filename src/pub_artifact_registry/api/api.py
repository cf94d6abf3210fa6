import logging
from typing import Optional

from flask import Flask, Response, jsonify, request
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from pub_artifact_registry.api.publish import FINALIZE_PATH, UPLOAD_PATH, PublishEngine
from pub_artifact_registry.api.sessions import SessionStore
from pub_artifact_registry.data.repositories.package_repository import PackageRepository
from pub_artifact_registry.data.services.artifact_registry_api_service import (
    ArtifactRegistryService,
)
from pub_artifact_registry.data.services.google_auth_service import GoogleAuthService
from pub_artifact_registry.domain.models.exceptions import PackageRepositoryError
from pub_artifact_registry.domain.models.models import ErrorResponse, ServerConfig

logger = logging.getLogger(__name__)

PUB_API_MEDIA_TYPE = "application/vnd.pub.v2+json"
OCTET_STREAM = "application/octet-stream"


def _error_response(status_code: int, code: str, message: str):
    return jsonify(ErrorResponse(code=code, message=message).to_json()), status_code


def _accept_is_supported(accept: str) -> bool:
    accept = accept.strip()
    if not accept or "*/*" in accept:
        return True
    return PUB_API_MEDIA_TYPE in accept or OCTET_STREAM in accept


def create_artifact_service(config: ServerConfig) -> ArtifactRegistryService:
    auth_service = GoogleAuthService()
    return ArtifactRegistryService(
        config.project_id,
        config.location,
        config.repository,
        token_provider=auth_service.get_auth_token,
        timeout=config.upstream_timeout,
    )


def create_app(
    config: Optional[ServerConfig] = None,
    artifact_service=None,
    sessions: Optional[SessionStore] = None,
) -> Flask:
    app = Flask(__name__)
    app.json.mimetype = PUB_API_MEDIA_TYPE
    app.json.sort_keys = False
    CORS(app, send_wildcard=True)

    if config is None:
        config = ServerConfig.from_env()
    if artifact_service is None:
        artifact_service = create_artifact_service(config)
    if sessions is None:
        sessions = SessionStore(ttl_seconds=config.session_ttl_seconds)

    package_repo = PackageRepository(
        artifact_service,
        max_workers=config.listing_workers,
        cache_size=config.manifest_cache_size,
    )
    publish_engine = PublishEngine(package_repo, sessions)

    def base_url() -> str:
        return config.base_url or request.host_url.rstrip("/")

    @app.before_request
    def check_accept_header():
        """Only API version 2 is served; POST uploads are exempt"""
        if request.method in ("POST", "OPTIONS"):
            return None
        if _accept_is_supported(request.headers.get("Accept", "")):
            return None
        return _error_response(
            406, "invalid_accept", "This server only supports API version 2"
        )

    @app.errorhandler(PackageRepositoryError)
    def handle_repository_error(error: PackageRepositoryError):
        if error.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, error)
        else:
            logger.warning("%s %s rejected: %s", request.method, request.path, error)
        return _error_response(error.status_code, error.code, error.message)

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        code = (error.name or "error").lower().replace(" ", "_")
        return _error_response(error.code or 500, code, error.description or error.name)

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.path)
        return _error_response(500, "internal_error", f"Internal server error: {error}")

    @app.route("/api/packages/<package_name>")
    def list_package_versions(package_name):
        """List all versions of a package (Pub Repository Specification v2)"""
        package = package_repo.get_package(package_name, base_url())
        return jsonify(package.to_json())

    @app.route("/api/packages/versions/new")
    def new_package_upload():
        """Get upload URL for publishing packages (Pub Repository Specification v2)"""
        if config.require_publish_auth:
            auth = request.headers.get("Authorization", "")
            if not auth.startswith("Bearer "):
                return Response(
                    status=401,
                    headers={
                        "WWW-Authenticate": 'Bearer realm="pub", '
                        'message="Authentication required. '
                        'Use gcloud credentials with dart pub token add."'
                    },
                )

        upload_info = publish_engine.initiate(base_url())
        return jsonify(upload_info.to_json())

    @app.route(UPLOAD_PATH, methods=["POST"])
    def upload_package():
        """Receive the multipart upload and point the client at the finalize URL"""
        finalize_url = publish_engine.upload(
            request.headers.get("Content-Type"), request.get_data, base_url()
        )
        return "", 204, {"Location": finalize_url}

    @app.route(FINALIZE_PATH)
    def finalize_upload():
        """Finalize package upload"""
        success = publish_engine.finalize(request.args.get("session"))
        return jsonify(success.to_json())

    # Deprecated endpoints for backward compatibility
    @app.route("/api/packages/<package_name>/versions/<version>")
    def get_package_version(package_name, version):
        """Deprecated: Inspect a specific version of a package"""
        package_version = package_repo.get_package_version(package_name, version, base_url())
        return jsonify(package_version.to_json())

    @app.route("/packages/<package_name>/versions/<version>.tar.gz")
    def download_package(package_name, version):
        """Download a package archive"""
        archive_data = package_repo.download_package_archive(package_name, version)
        return Response(
            archive_data,
            mimetype=OCTET_STREAM,
            headers={
                "Content-Disposition": f'attachment; filename="{package_name}-{version}.tar.gz"'
            },
        )

    return app
