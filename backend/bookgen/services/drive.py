"""Google Drive object storage for generated cover images."""

import io
import logging
import os
import re
from typing import Any

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.http import MediaIoBaseUpload

from bookgen.services.errors import ServiceError

logger = logging.getLogger(__name__)

_FILE_ID_RE = re.compile(r"(?:[?&]id=|/d/)([\w-]+)")


class DriveUploadError(ServiceError):
    """Raised when a Drive upload fails."""


def public_url(file_id: str) -> str:
    """Direct-download URL for a Drive file shared with anyone holding the link."""
    return f"https://drive.google.com/uc?id={file_id}"


def file_id_from_url(url: str) -> str | None:
    m = _FILE_ID_RE.search(url)
    return m.group(1) if m else None


class DriveService:
    """Stores image bytes in Google Drive and hands back permanent public URLs."""

    def __init__(self) -> None:
        self._service: Any = None

    def _build_service(self) -> Any:
        token_path = os.environ.get("GOOGLE_TOKEN_PATH", "token.json")
        if not os.path.exists(token_path):
            raise DriveUploadError(
                f"Google OAuth token not found at {token_path}. "
                "Complete the OAuth flow first."
            )
        creds = Credentials.from_authorized_user_file(token_path)  # type: ignore[no-untyped-call]
        return build("drive", "v3", credentials=creds)

    def _get_service(self) -> Any:
        if self._service is None:
            self._service = self._build_service()
        return self._service

    def upload(
        self,
        data: bytes,
        folder: str | None,
        filename: str,
        mimetype: str = "image/png",
    ) -> str:
        """Upload *data* into *folder* as *filename* and return its permanent URL.

        Raises DriveUploadError on failure.
        """
        try:
            service = self._get_service()
            media = MediaIoBaseUpload(io.BytesIO(data), mimetype=mimetype, resumable=False)
            file_metadata: dict[str, object] = {"name": filename, "mimeType": mimetype}
            if folder:
                file_metadata["parents"] = [folder]
            created = (
                service.files()
                .create(
                    body=file_metadata,
                    media_body=media,
                    fields="id",
                    supportsAllDrives=True,
                )
                .execute()
            )
            file_id: str = created["id"]

            # Make the file readable by anyone with the link.
            service.permissions().create(
                fileId=file_id,
                body={"type": "anyone", "role": "reader"},
            ).execute()
        except DriveUploadError:
            raise
        except Exception as exc:
            raise DriveUploadError(str(exc)) from exc
        logger.info("uploaded %s to Drive as %s (%d bytes)", filename, file_id, len(data))
        return public_url(file_id)

    def delete(self, url: str) -> None:
        """Delete the Drive file behind *url*. Best-effort: failures are logged, not raised."""
        file_id = file_id_from_url(url)
        if file_id is None:
            logger.warning("cannot delete %s: no Drive file id in URL", url)
            return
        try:
            service = self._get_service()
            service.files().delete(fileId=file_id).execute()
        except Exception as exc:
            logger.warning("failed to delete Drive file %s: %s", file_id, exc)
