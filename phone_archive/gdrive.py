"""
Remote archive source: a Google Drive folder of exported XML archives.

The backup app on the phone uploads its exports to a shared folder; this
module finds the newest one and downloads it.

Authentication:
    A service account signs an RS256 JWT assertion (python-jose) and trades
    it at its token_uri for a bearer token (httpx). DriveSession does this
    once and reuses the token for its own lifetime only; nothing is cached
    across sessions or processes.

Usage:
    with DriveSession(ServiceAccountCredentials.from_json(text)) as session:
        latest = DriveClient(session).get_latest_xml(folder_id)
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import httpx
from jose import jwt
from jose.exceptions import JOSEError

logger = logging.getLogger(__name__)

DRIVE_API_URL = "https://www.googleapis.com/drive/v3/files"
DRIVE_SCOPE = "https://www.googleapis.com/auth/drive.readonly"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
DEFAULT_TOKEN_URI = "https://oauth2.googleapis.com/token"

# Assertion lifetime accepted by the token endpoint (seconds)
ASSERTION_LIFETIME = 3600
REQUEST_TIMEOUT = 30.0


class RemoteArchiveError(RuntimeError):
    """Listing, download or token exchange against the remote folder failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class ServiceAccountCredentials:
    """The fields of a service-account key file this client needs."""

    client_email: str
    private_key: str
    token_uri: str = DEFAULT_TOKEN_URI

    @classmethod
    def from_json(cls, text: str) -> "ServiceAccountCredentials":
        """
        Parse a service-account key file.

        Raises:
            RemoteArchiveError: If the JSON is invalid or lacks a field.
        """
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise RemoteArchiveError(f"Invalid service-account JSON: {e}") from e

        if not isinstance(data, dict):
            raise RemoteArchiveError("Service-account JSON must be an object")

        missing = [key for key in ("client_email", "private_key") if not data.get(key)]
        if missing:
            raise RemoteArchiveError(f"Service-account JSON missing: {', '.join(missing)}")

        return cls(
            client_email=data["client_email"],
            private_key=data["private_key"],
            token_uri=data.get("token_uri") or DEFAULT_TOKEN_URI,
        )


@dataclass(frozen=True)
class DriveFile:
    """One file listed in the remote folder."""

    id: str
    name: str
    mime_type: str
    modified_time: str

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "DriveFile":
        return cls(
            id=item["id"],
            name=item.get("name", ""),
            mime_type=item.get("mimeType", ""),
            modified_time=item.get("modifiedTime", ""),
        )


class DriveSession:
    """
    Authenticated HTTP session against the Drive API.

    Built once per invocation (one sync run, one request) and closed after.
    An injected httpx.Client is used as-is and left open by close().
    """

    def __init__(
        self,
        credentials: ServiceAccountCredentials,
        http_client: Optional[httpx.Client] = None,
    ):
        self.credentials = credentials
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=REQUEST_TIMEOUT)
        self._access_token: Optional[str] = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def close(self) -> None:
        """Close the underlying client if this session created it."""
        if self._owns_client:
            self._client.close()

    def build_assertion(self, now: Optional[int] = None) -> str:
        """
        Sign the JWT assertion for the token exchange.

        Raises:
            RemoteArchiveError: If the private key cannot sign.
        """
        issued_at = int(time.time()) if now is None else now
        claims = {
            "iss": self.credentials.client_email,
            "scope": DRIVE_SCOPE,
            "aud": self.credentials.token_uri,
            "iat": issued_at,
            "exp": issued_at + ASSERTION_LIFETIME,
        }
        try:
            return jwt.encode(claims, self.credentials.private_key, algorithm="RS256")
        except JOSEError as e:
            raise RemoteArchiveError(f"Failed to sign assertion: {e}") from e

    def access_token(self) -> str:
        """Get the bearer token, exchanging an assertion on first use."""
        if self._access_token is not None:
            return self._access_token

        logger.debug(f"Requesting access token for {self.credentials.client_email}")
        response = self._send(
            "POST",
            self.credentials.token_uri,
            "obtain access token",
            data={"grant_type": JWT_BEARER_GRANT, "assertion": self.build_assertion()},
        )

        token = response.json().get("access_token")
        if not token:
            raise RemoteArchiveError("Token response did not contain an access_token")

        self._access_token = token
        return token

    def get(self, url: str, action: str, params: Optional[Dict[str, str]] = None) -> httpx.Response:
        """Authenticated GET; raises RemoteArchiveError on any failure."""
        headers = {"Authorization": f"Bearer {self.access_token()}"}
        return self._send("GET", url, action, params=params, headers=headers)

    def _send(self, method: str, url: str, action: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise RemoteArchiveError(f"Failed to {action}: {e}") from e

        if response.is_error:
            raise RemoteArchiveError(
                f"Failed to {action}: HTTP {response.status_code} {response.text}",
                status_code=response.status_code,
            )
        return response


class DriveClient:
    """Read-only access to the XML archives of one Drive account."""

    def __init__(self, session: DriveSession):
        self.session = session

    def list_files(self, folder_id: str) -> List[DriveFile]:
        """
        List the XML files of a folder, most recently modified first.

        Args:
            folder_id: Drive folder id.

        Returns:
            List of DriveFile (possibly empty).
        """
        params = {
            "q": f"'{folder_id}' in parents and mimeType='text/xml' and trashed=false",
            "orderBy": "modifiedTime desc",
            "fields": "files(id,name,mimeType,modifiedTime)",
        }
        response = self.session.get(DRIVE_API_URL, "list files", params=params)
        files = [DriveFile.from_api(item) for item in response.json().get("files") or []]
        logger.info(f"Found {len(files)} XML files in folder {folder_id}")
        return files

    def download_file(self, file_id: str) -> str:
        """Download a file's content as text."""
        response = self.session.get(
            f"{DRIVE_API_URL}/{file_id}", "download file", params={"alt": "media"}
        )
        return response.text

    def get_latest_xml(self, folder_id: str) -> Optional[Tuple[DriveFile, str]]:
        """
        Download the most recently modified XML file of a folder.

        Returns:
            (file, content), or None if the folder has no XML files.
        """
        files = self.list_files(folder_id)
        if not files:
            return None

        latest = files[0]
        logger.info(f"Downloading {latest.name} (modified {latest.modified_time})")
        return latest, self.download_file(latest.id)
