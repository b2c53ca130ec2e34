"""HTTP client for the Overleaf web API.

This module provides:
- OverleafHTTPClient: Cookie-authenticated REST client
- Project metadata, entity listing and content retrieval
- Entity mutations (create, upload, rename, move, delete)
- The Socket.IO session handshake used by the real-time transport

Mutating requests carry the CSRF token both as the X-Csrf-Token header
and as a `_csrf` field in JSON bodies.
"""

from __future__ import annotations

import base64
import html
import json
import logging
import mimetypes
import re
import time
from dataclasses import dataclass
from typing import Any

import httpx

from leafsync.core.config import Identity, ServerConfig
from leafsync.core.types import EntityKind

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Session cookies missing, expired or rejected."""


class ConflictError(APIError):
    """An entity with the same name already exists."""


class NotFoundError(APIError):
    """Resource not found."""


@dataclass
class ProjectDetails:
    """Project metadata scraped from the editor page."""

    project_id: str
    name: str | None = None
    root_doc_id: str | None = None
    user_id: str | None = None
    user_email: str | None = None
    compiler: str | None = None
    root_folder: list[dict[str, Any]] | None = None


@dataclass
class RemoteEntityRef:
    """Path-only entity description from the entities listing."""

    path: str
    type: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteEntityRef:
        return cls(path=data["path"], type=data.get("type", "file"))

    @property
    def kind(self) -> EntityKind:
        if self.type == "doc":
            return EntityKind.DOC
        if self.type == "folder":
            return EntityKind.FOLDER
        return EntityKind.FILE


@dataclass
class SocketSession:
    """Result of the Socket.IO v0.9 handshake."""

    sid: str
    heartbeat_timeout: int
    close_timeout: int
    transports: list[str]

    @classmethod
    def parse(cls, body: str) -> SocketSession:
        """Parse "sid:heartbeat:close:transports"."""
        parts = body.strip().split(":")
        if len(parts) < 4 or not parts[0]:
            raise APIError(f"Invalid socket handshake: {body[:80]!r}")
        return cls(
            sid=parts[0],
            heartbeat_timeout=int(parts[1] or 0),
            close_timeout=int(parts[2] or 0),
            transports=parts[3].split(","),
        )


def entity_id_for_path(path: str) -> str:
    """Deterministic identity for an entity known only by path."""
    encoded = base64.b64encode(path.encode("utf-8")).decode("ascii")
    return re.sub(r"[^a-zA-Z0-9]", "", encoded)[:24]


def _extract_meta(body: str, name: str) -> str | None:
    match = re.search(rf'<meta\s+name="{re.escape(name)}"\s+content="([^"]*)"', body)
    return html.unescape(match.group(1)) if match else None


def _extract_json_meta(body: str, name: str) -> Any:
    match = re.search(
        rf'<meta\s+name="{re.escape(name)}"\s+data-type="json"\s+content="([^"]*)"',
        body,
    )
    if not match:
        return None
    try:
        return json.loads(html.unescape(match.group(1)))
    except json.JSONDecodeError:
        logger.warning("Could not decode %s meta tag", name)
        return None


class OverleafHTTPClient:
    """Async HTTP client for the Overleaf web API."""

    def __init__(self, config: ServerConfig, identity: Identity) -> None:
        """Initialize the client.

        Args:
            config: Server configuration with URL, timeout and SSL settings.
            identity: Session cookies and CSRF token.
        """
        self._config = config
        self._identity = identity
        self._client = httpx.AsyncClient(
            base_url=config.server_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
            follow_redirects=False,
            headers={"Cookie": identity.cookies, "Connection": "keep-alive"},
        )

    @property
    def identity(self) -> Identity:
        return self._identity

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> OverleafHTTPClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Raise the matching APIError for unsuccessful responses."""
        status = response.status_code
        if status in (200, 204):
            return response
        if status in (401, 403):
            raise AuthenticationError("Session rejected by server", status)
        if 300 <= status < 400 and "login" in response.headers.get("location", ""):
            raise AuthenticationError("Redirected to login, session expired", status)
        if status == 404:
            raise NotFoundError("Resource not found", 404)
        if status == 409:
            raise ConflictError(response.text or "Conflict", 409)
        raise APIError(f"{status}: {response.text[:200]}", status)

    def _csrf_headers(self) -> dict[str, str]:
        return {"X-Csrf-Token": self._identity.csrf_token}

    def _json_body(self, **fields: Any) -> dict[str, Any]:
        return {"_csrf": self._identity.csrf_token, **fields}

    @staticmethod
    def _json_or_empty(response: httpx.Response) -> dict[str, Any]:
        if not response.content:
            return {}
        try:
            data = response.json()
        except json.JSONDecodeError:
            return {}
        return data if isinstance(data, dict) else {}

    # === Project metadata ===

    async def get_project_details(self, project_id: str) -> ProjectDetails:
        """Fetch project metadata from the editor page's meta tags.

        Raises:
            AuthenticationError: If the session is not accepted.
            NotFoundError: If the project does not exist.
        """
        response = self._handle_response(await self._client.get(f"/project/{project_id}"))
        body = response.text
        root_folder = _extract_json_meta(body, "ol-rootFolder")
        return ProjectDetails(
            project_id=_extract_meta(body, "ol-project_id") or project_id,
            name=_extract_meta(body, "ol-projectName"),
            root_doc_id=_extract_meta(body, "ol-rootDoc_id"),
            user_id=_extract_meta(body, "ol-user_id"),
            user_email=_extract_meta(body, "ol-usersEmail"),
            compiler=_extract_meta(body, "ol-compiler"),
            root_folder=root_folder if isinstance(root_folder, list) else None,
        )

    async def get_project_entities(self, project_id: str) -> list[RemoteEntityRef]:
        """List every entity path in the project."""
        response = self._handle_response(
            await self._client.get(f"/project/{project_id}/entities")
        )
        return [RemoteEntityRef.from_dict(e) for e in response.json().get("entities", [])]

    # === Content ===

    async def get_doc_content(self, project_id: str, doc_id: str) -> list[str]:
        """Fetch document lines."""
        response = self._handle_response(
            await self._client.get(f"/project/{project_id}/doc/{doc_id}")
        )
        return list(response.json().get("lines", []))

    async def get_file_content(self, project_id: str, file_id: str) -> bytes:
        """Download a binary file."""
        response = self._handle_response(
            await self._client.get(f"/project/{project_id}/file/{file_id}")
        )
        return response.content

    # === Mutations ===

    async def upload_file(
        self,
        project_id: str,
        folder_id: str,
        filename: str,
        content: bytes,
    ) -> dict[str, Any]:
        """Upload (or replace) a file in a folder.

        Returns:
            Server response, typically {"success": true, "entity_id": ...}.
        """
        mime_type = mimetypes.guess_type(filename)[0] or "text/plain"
        response = self._handle_response(
            await self._client.post(
                f"/project/{project_id}/upload",
                params={"folder_id": folder_id},
                headers=self._csrf_headers(),
                data={"targetFolderId": folder_id, "name": filename, "type": mime_type},
                files={"qqfile": (filename, content, mime_type)},
            )
        )
        logger.debug("Uploaded %s (%d bytes)", filename, len(content))
        return self._json_or_empty(response)

    async def add_doc(self, project_id: str, parent_folder_id: str, name: str) -> dict[str, Any]:
        """Create an empty document.

        Returns:
            The created entity, typically {"_id": ..., "name": ...}.
        """
        response = self._handle_response(
            await self._client.post(
                f"/project/{project_id}/doc",
                headers=self._csrf_headers(),
                json=self._json_body(parent_folder_id=parent_folder_id, name=name),
            )
        )
        return self._json_or_empty(response)

    async def add_folder(self, project_id: str, parent_folder_id: str, name: str) -> dict[str, Any]:
        """Create a folder."""
        response = self._handle_response(
            await self._client.post(
                f"/project/{project_id}/folder",
                headers=self._csrf_headers(),
                json=self._json_body(parent_folder_id=parent_folder_id, name=name),
            )
        )
        return self._json_or_empty(response)

    async def delete_entity(self, project_id: str, kind: EntityKind, entity_id: str) -> None:
        """Delete a doc, file or folder."""
        self._handle_response(
            await self._client.delete(
                f"/project/{project_id}/{kind.value}/{entity_id}",
                headers=self._csrf_headers(),
            )
        )

    async def rename_entity(
        self, project_id: str, kind: EntityKind, entity_id: str, name: str
    ) -> None:
        """Rename an entity in place."""
        self._handle_response(
            await self._client.post(
                f"/project/{project_id}/{kind.value}/{entity_id}/rename",
                headers=self._csrf_headers(),
                json=self._json_body(name=name),
            )
        )

    async def move_entity(
        self, project_id: str, kind: EntityKind, entity_id: str, folder_id: str
    ) -> None:
        """Move an entity to another folder."""
        self._handle_response(
            await self._client.post(
                f"/project/{project_id}/{kind.value}/{entity_id}/move",
                headers=self._csrf_headers(),
                json=self._json_body(folder_id=folder_id),
            )
        )

    # === Real-time session ===

    async def get_socket_session(self, query: dict[str, str] | None = None) -> SocketSession:
        """Perform the Socket.IO v0.9 handshake.

        Args:
            query: Extra query parameters (e.g. projectId for scheme A).
        """
        params = dict(query or {})
        params.setdefault("t", str(int(time.time() * 1000)))
        response = self._handle_response(
            await self._client.get(
                f"{self._config.origin}/socket.io/1/",
                params=params,
                headers={"Origin": self._config.origin},
            )
        )
        return SocketSession.parse(response.text)
