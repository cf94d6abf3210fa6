import logging
import threading
from typing import Optional, Sequence

import google.auth
from google.auth import exceptions as google_auth_exceptions
from google.auth.transport.requests import Request

from pub_artifact_registry.domain.models.exceptions import UpstreamError

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPES = ("https://www.googleapis.com/auth/cloud-platform",)


class GoogleAuthService:
    """Supplies OAuth access tokens from Application Default Credentials"""

    def __init__(self, credentials=None, scopes: Sequence[str] = CLOUD_PLATFORM_SCOPES):
        if credentials is None:
            try:
                credentials, _ = google.auth.default(scopes=list(scopes))
            except google_auth_exceptions.DefaultCredentialsError as e:
                raise UpstreamError(f"Google credentials unavailable: {e}") from e
        self.credentials = credentials
        self._lock = threading.Lock()

    def get_auth_token(self) -> str:
        """Current access token, refreshed when it is missing or expired"""
        with self._lock:
            if not self.credentials.valid:
                try:
                    self.credentials.refresh(Request())
                except google_auth_exceptions.GoogleAuthError as e:
                    logger.error("Failed to refresh Google credentials: %s", e)
                    raise UpstreamError(f"Failed to get auth token: {e}") from e
            token: Optional[str] = self.credentials.token
        if not token:
            raise UpstreamError("Google credentials returned no access token")
        return token
