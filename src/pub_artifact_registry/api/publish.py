"""Three-step publishing handshake of the Pub repository spec v2.

    GET  /api/packages/versions/new              -> upload url + session field
    POST /api/packages/versions/newUpload        -> archive kept in a session
    GET  /api/packages/versions/newUploadFinish  -> archive pushed upstream

Nothing reaches Artifact Registry before the finalize step.
"""

import logging
import uuid
from typing import Callable, Optional
from urllib.parse import quote

from pub_artifact_registry.api.multipart import (
    FILE_FIELD,
    SESSION_FIELD,
    decode_multipart,
    extract_boundary,
)
from pub_artifact_registry.api.sessions import SessionStore
from pub_artifact_registry.data.repositories.package_repository import PackageRepository
from pub_artifact_registry.domain.models.exceptions import (
    ArchiveError,
    ProtocolError,
    PublishError,
    SessionNotFoundError,
    UpstreamError,
)
from pub_artifact_registry.domain.models.models import (
    UploadInfo,
    UploadSession,
    UploadSuccess,
)

logger = logging.getLogger(__name__)

UPLOAD_PATH = "/api/packages/versions/newUpload"
FINALIZE_PATH = "/api/packages/versions/newUploadFinish"


def generate_session_id() -> str:
    return uuid.uuid4().hex


class PublishEngine:
    def __init__(
        self,
        package_repo: PackageRepository,
        sessions: SessionStore,
        session_id_factory: Callable[[], str] = generate_session_id,
    ):
        self.package_repo = package_repo
        self.sessions = sessions
        self.session_id_factory = session_id_factory

    def initiate(self, base_url: str) -> UploadInfo:
        session_id = self.session_id_factory()
        logger.info("Initiating package publish, session %s", session_id)
        return UploadInfo(url=f"{base_url}{UPLOAD_PATH}", fields={SESSION_FIELD: session_id})

    def upload(
        self, content_type: Optional[str], read_body: Callable[[], bytes], base_url: str
    ) -> str:
        """Accept an uploaded archive and return the finalize URL for the client.

        The body is only read once the content type has been checked.
        """
        content_type = content_type or ""
        if "multipart/form-data" not in content_type.lower():
            raise ProtocolError(
                "Content-Type must be multipart/form-data", code="invalid_content_type"
            )
        boundary = extract_boundary(content_type)

        fields = decode_multipart(read_body(), boundary)

        file_field = fields.get(FILE_FIELD)
        if file_field is None:
            raise ProtocolError("Package archive file is required", code="missing_file")

        session_field = fields.get(SESSION_FIELD)
        session_id = None
        if session_field is not None and not session_field.is_binary:
            session_id = session_field.text.strip() or None
        if session_id is None:
            session_id = self.session_id_factory()

        try:
            archive = self.package_repo.parse_package_archive(file_field.as_bytes())
        except ArchiveError as e:
            logger.warning("Rejected upload for session %s: %s", session_id, e)
            raise ArchiveError(f"Failed to upload package: {e.message}") from e

        self.sessions.put(UploadSession(session_id=session_id, archive=archive))
        logger.info(
            "Received %s@%s (%d bytes) in session %s",
            archive.package_name,
            archive.version,
            len(archive.data),
            session_id,
        )
        return f"{base_url}{FINALIZE_PATH}?session={quote(session_id, safe='')}"

    def finalize(self, session_id: Optional[str]) -> UploadSuccess:
        if not session_id:
            raise ProtocolError("Session ID is required", code="missing_session")

        # Out of the store while publishing, restored on failure with its
        # original expiry. A concurrent finalize gets session_not_found.
        session = self.sessions.take(session_id)
        if session is None:
            raise SessionNotFoundError("Upload session not found")

        try:
            self.package_repo.publish_package(session.archive)
        except UpstreamError as e:
            self.sessions.restore(session)
            raise PublishError(f"Failed to publish package: {e}") from e
        except Exception:
            self.sessions.restore(session)
            raise

        logger.info(
            "Finalized session %s: %s@%s", session_id, session.package_name, session.version
        )
        return UploadSuccess(
            message=f"Successfully published {session.package_name} version {session.version}"
        )
