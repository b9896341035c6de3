"""Remote content store backed by the GitHub contents API.

Every update or delete must carry the current content hash (the git blob
sha) of the file, which gives optimistic concurrency for free: a write
based on a stale sha is rejected by the remote.
"""
import base64
import hashlib
import logging
import time
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

import httpx

from gitnote_sync.config import SyncConfig
from gitnote_sync.exceptions import AuthError, ErrorCode, NotFoundError, RemoteError
from gitnote_sync.models.schema import RemoteDocument, RemoteFile

logger = logging.getLogger(__name__)

README_PATH = "README.md"

README_CONTENT = """# AI Note Assistant sync repository

This repository holds the notes and configuration synchronized by
AI Note Assistant.

## Layout

```
├── notes/           # Notes (Markdown)
│   └── {notebook}/  # One directory per notebook
├── config/          # Configuration
│   └── data.json    # Notebooks, folders, tags and settings
└── README.md
```

## Notes

- This repository is managed automatically
- Do not edit config/data.json by hand
- Note files may be edited, but keep their front matter intact

---
*Created automatically by AI Note Assistant*
"""


def git_blob_sha(content: str) -> str:
    """Return the sha git assigns to a blob holding ``content`` (UTF-8)."""
    data = content.encode("utf-8")
    header = f"blob {len(data)}\0".encode("ascii")
    return hashlib.sha1(header + data).hexdigest()


class RemoteContentStore:
    """File-level access to one repository: get, put, delete, list."""

    def __init__(
        self,
        token: str,
        config: SyncConfig,
        owner: Optional[str] = None,
        repo: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the store.

        Args:
            token: GitHub personal access token.
            config: Sync configuration (base URL, timeouts, settle delay).
            owner: Repository owner; normally the authenticated user's login.
            repo: Repository name; defaults to ``config.repo_name``.
            transport: Optional httpx transport (tests inject a MockTransport).
            sleep: Delay function used while waiting for a new repo to settle.
        """
        self.owner = owner
        self.repo = repo or config.repo_name
        self._config = config
        self._sleep = sleep
        self._client = httpx.Client(
            base_url=config.api_base_url,
            headers={
                "Accept": "application/vnd.github.v3+json",
                "Authorization": f"token {token}",
                "User-Agent": config.user_agent,
            },
            timeout=config.request_timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _contents_url(self, path: str) -> str:
        if not self.owner:
            raise AuthError("Repository owner unknown; log in first")
        path = path.strip("/")
        return f"/repos/{self.owner}/{self.repo}/contents/{quote(path, safe='/')}"

    def _request(
        self,
        method: str,
        url: str,
        path: Optional[str] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Send a request and map failures onto the error taxonomy.

        Raises:
            NotFoundError: On 404.
            AuthError: On 401, or 403 caused by a bad credential.
            RemoteError: On any other HTTP or transport failure.
        """
        try:
            response = self._client.request(method, url, json=json)
        except httpx.HTTPError as e:
            raise RemoteError(
                f"{method} {url} failed: {e}",
                path=path,
                code=ErrorCode.REMOTE_UNAVAILABLE,
                original_error=e,
            )

        status = response.status_code
        if status == 404:
            raise NotFoundError(path or url)
        if status == 401 or (status == 403 and "bad credentials" in response.text.lower()):
            raise AuthError(
                "GitHub rejected the access token",
                code=ErrorCode.AUTH_INVALID,
                status_code=status,
            )
        if status >= 400:
            raise RemoteError(
                f"{method} {url} returned {status}: {_error_message(response)}",
                path=path,
                status_code=status,
            )
        if status == 204 or not response.content:
            return None
        return response.json()

    # ------------------------------------------------------------------
    # Account and repository
    # ------------------------------------------------------------------

    def get_authenticated_user(self) -> Dict[str, Any]:
        """Validate the token and return the user's public profile."""
        data = self._request("GET", "/user")
        return {
            "login": data.get("login"),
            "name": data.get("name"),
            "avatar_url": data.get("avatar_url"),
            "html_url": data.get("html_url"),
        }

    def repo_exists(self) -> bool:
        try:
            self._request("GET", f"/repos/{self.owner}/{self.repo}")
            return True
        except NotFoundError:
            return False

    def ensure_container_exists(self) -> bool:
        """Create the private sync repository if it is missing.

        A repository created moments ago may reject writes for a few
        seconds, so after creation this waits ``repo_settle_delay`` and
        then polls until the repository is readable before writing the
        README.

        Returns:
            True if the repository was created by this call.
        """
        if self.repo_exists():
            return False

        logger.info("Creating sync repository %s/%s", self.owner, self.repo)
        self._request(
            "POST",
            "/user/repos",
            json={
                "name": self.repo,
                "description": "AI Note Assistant - note sync repository",
                "private": True,
                "auto_init": True,
            },
        )
        self._wait_until_available()
        self._write_readme()
        return True

    def _wait_until_available(self) -> None:
        attempts = self._config.repo_settle_attempts
        for attempt in range(attempts):
            self._sleep(self._config.repo_settle_delay * (attempt + 1))
            try:
                if self.repo_exists():
                    return
            except RemoteError as e:
                logger.debug("Repository not ready yet (attempt %d): %s", attempt + 1, e)
        raise RemoteError(
            f"Repository {self.owner}/{self.repo} did not become available",
            code=ErrorCode.REMOTE_UNAVAILABLE,
        )

    def _write_readme(self) -> None:
        try:
            existing_sha = self.get_sha(README_PATH)
            self.put(
                README_PATH,
                README_CONTENT,
                expected_sha=existing_sha,
                message="Initial commit - AI Note Assistant",
            )
        except RemoteError as e:
            logger.error("Failed to create README: %s", e)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def get(self, path: str) -> RemoteDocument:
        """Read a file.

        Raises:
            NotFoundError: If the file does not exist or ``path`` is a directory.
        """
        data = self._request("GET", self._contents_url(path), path=path)
        if isinstance(data, list) or data.get("type") != "file":
            raise NotFoundError(path, f"Remote path '{path}' is not a file")
        raw = data.get("content") or ""
        try:
            content = base64.b64decode(raw).decode("utf-8")
        except (ValueError, UnicodeDecodeError) as e:
            raise RemoteError(f"Undecodable content at {path}", path=path, original_error=e)
        return RemoteDocument(path=data.get("path", path), content=content, sha=data["sha"])

    def get_sha(self, path: str) -> Optional[str]:
        """Current sha of a file, or None if it does not exist."""
        try:
            return self.get(path).sha
        except NotFoundError:
            return None

    def put(
        self,
        path: str,
        content: str,
        expected_sha: Optional[str] = None,
        message: Optional[str] = None,
    ) -> str:
        """Create or update a file and return its new sha."""
        body: Dict[str, Any] = {
            "message": message or f"Update {path}",
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
        }
        if expected_sha:
            body["sha"] = expected_sha
        data = self._request("PUT", self._contents_url(path), path=path, json=body)
        try:
            return data["content"]["sha"]
        except (TypeError, KeyError):
            return git_blob_sha(content)

    def delete(self, path: str, sha: str, message: Optional[str] = None) -> None:
        self._request(
            "DELETE",
            self._contents_url(path),
            path=path,
            json={"message": message or f"Delete {path}", "sha": sha},
        )

    def list(self, path: str) -> List[RemoteFile]:
        """One directory level. A missing directory is an empty listing."""
        try:
            data = self._request("GET", self._contents_url(path), path=path)
        except NotFoundError:
            return []
        if not isinstance(data, list):
            return []
        return [
            RemoteFile(name=item["name"], path=item["path"], sha=item["sha"], kind=item["type"])
            for item in data
            if item.get("type") in ("file", "dir")
        ]

    def list_files(self, path: str) -> List[RemoteFile]:
        """All files under ``path``, recursing into subdirectories."""
        files: List[RemoteFile] = []
        for entry in self.list(path):
            if entry.kind == "dir":
                files.extend(self.list_files(entry.path))
            else:
                files.append(entry)
        return files


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return response.text[:200]
