"""Artifact publication backends.

This module handles:
- Publishing release archives and bare binaries
- A local directory backend and an HTTP upload backend

Retention and access control belong to the backend.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Protocol

import httpx

if TYPE_CHECKING:
    from crossmatrix.config import Settings

logger = logging.getLogger(__name__)


class PublishError(Exception):
    """Raised when an upload fails."""

    def __init__(self, message: str, code: str = "publish_failed") -> None:
        super().__init__(message)
        self.code = code


def _validate_name(name: str) -> str:
    path = PurePosixPath(name)
    if not name or path.is_absolute() or ".." in path.parts:
        raise PublishError(f"Invalid artifact name: {name!r}", code="invalid_name")
    return path.as_posix()


class PublicationBackend(Protocol):
    """Upload capability."""

    def upload(self, name: str, data: bytes) -> str:
        """Upload an artifact and return a handle.

        Raises:
            PublishError: If the upload fails.
        """
        ...


class LocalPublisher:
    """Publishes artifacts into a local directory."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def upload(self, name: str, data: bytes) -> str:
        dest = self.root / _validate_name(name)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".tmp_", dir=dest.parent)
        except OSError as e:
            raise PublishError(f"Failed to publish {name}: {e}") from e
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, dest)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise PublishError(f"Failed to publish {name}: {e}") from e
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.info("Published %s (%d bytes)", dest, len(data))
        return dest.resolve().as_uri()


class HttpPublisher:
    """Publishes artifacts with HTTP PUT requests.

    The handle is taken from a JSON response's ``handle`` or ``url`` field,
    falling back to the upload URL.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        retention_days: int | None = None,
        timeout: float = 300.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.retention_days = retention_days
        self.timeout = timeout
        self._client = client

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/octet-stream"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self.retention_days is not None:
            headers["X-Retention-Days"] = str(self.retention_days)
        return headers

    def upload(self, name: str, data: bytes) -> str:
        url = f"{self.base_url}/{_validate_name(name)}"
        client = self._client or httpx.Client(timeout=self.timeout)
        try:
            response = client.put(url, content=data, headers=self._headers())
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise PublishError(
                f"Upload of {name} failed with HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise PublishError(f"Upload of {name} failed: {e}") from e
        finally:
            if self._client is None:
                client.close()

        handle = url
        if response.headers.get("content-type", "").startswith("application/json"):
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                handle = str(body.get("handle") or body.get("url") or url)
        logger.info("Uploaded %s (%d bytes) -> %s", name, len(data), handle)
        return handle


def make_publisher(settings: Settings) -> PublicationBackend:
    """Create the configured publication backend.

    Uses HTTP uploads when ``publish_url`` is set, otherwise the local
    publication directory.
    """
    if settings.publish_url:
        return HttpPublisher(
            settings.publish_url,
            token=settings.publish_token,
            retention_days=settings.publish_retention_days,
            timeout=settings.publish_timeout,
        )
    return LocalPublisher(settings.publish_dir)


__all__ = [
    "HttpPublisher",
    "LocalPublisher",
    "PublicationBackend",
    "PublishError",
    "make_publisher",
]
