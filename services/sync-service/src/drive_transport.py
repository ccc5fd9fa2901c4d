"""
Drive v3 file primitives used by the remote state store and the backup flows.

Every call first asks the token broker for a bearer token; when none is usable
`InteractiveAuthRequired` escapes unchanged so automatic callers can skip
instead of prompting. Non-success responses surface as `TransportError`
carrying the operation name and status; recovery is always the caller's call.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from uuid import uuid4

import httpx

from errors import TransportError
from http_client import ResilientHttpClient
from token_broker import TokenBroker

logger = logging.getLogger(__name__)

DRIVE_API_BASE = "https://www.googleapis.com/drive/v3"
DRIVE_UPLOAD_BASE = "https://www.googleapis.com/upload/drive/v3"
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
# Private per-application storage area; addressed via `spaces`, not a parents predicate.
APP_DATA_SPACE = "appDataFolder"
FILE_FIELDS = "files(id,name,mimeType,parents,modifiedTime,size)"


@dataclass
class DriveFile:
    id: str
    name: str
    mime_type: str = ""
    parents: List[str] = field(default_factory=list)
    modified_time: str | None = None
    size: str | None = None

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "DriveFile":
        return cls(
            id=payload["id"],
            name=payload.get("name", ""),
            mime_type=payload.get("mimeType", ""),
            parents=list(payload.get("parents") or []),
            modified_time=payload.get("modifiedTime"),
            size=payload.get("size"),
        )


class DriveTransport:
    def __init__(
        self,
        broker: TokenBroker,
        http_client: ResilientHttpClient,
        *,
        api_base: str = DRIVE_API_BASE,
        upload_base: str = DRIVE_UPLOAD_BASE,
    ) -> None:
        self._broker = broker
        self._http = http_client
        self._api_base = api_base.rstrip("/")
        self._upload_base = upload_base.rstrip("/")

    async def create_folder(self, name: str, parent_id: str | None = None) -> str:
        metadata: Dict[str, Any] = {"name": name, "mimeType": FOLDER_MIME_TYPE}
        if parent_id:
            metadata["parents"] = [parent_id]

        response = await self._send("create_folder", "POST", f"{self._api_base}/files", json=metadata)
        folder_id = response.json()["id"]
        logger.info({"event": "drive_folder_created", "name": name, "file_id": folder_id})
        return folder_id

    async def find_folder(self, name: str) -> Optional[str]:
        query = f"name='{_quote(name)}' and mimeType='{FOLDER_MIME_TYPE}' and trashed=false"
        files = await self._search("find_folder", query)
        return files[0].id if files else None

    async def find_file(self, name: str, parent_id: str | None = None) -> Optional[str]:
        query = f"name='{_quote(name)}' and trashed=false"
        if parent_id == APP_DATA_SPACE:
            files = await self._search("find_file", query, spaces=APP_DATA_SPACE)
        else:
            if parent_id:
                query += f" and '{_quote(parent_id)}' in parents"
            files = await self._search("find_file", query)
        return files[0].id if files else None

    async def upload_file(self, content: str, name: str, parent_id: str | None = None) -> str:
        metadata: Dict[str, Any] = {"name": name}
        if parent_id:
            metadata["parents"] = [parent_id]

        boundary = f"finance-sync-{uuid4().hex}"
        params = {"uploadType": "multipart"}
        if parent_id == APP_DATA_SPACE:
            params["spaces"] = APP_DATA_SPACE

        response = await self._send(
            "upload_file",
            "POST",
            f"{self._upload_base}/files",
            params=params,
            headers={"Content-Type": f'multipart/related; boundary="{boundary}"'},
            content=_multipart_body(boundary, metadata, content),
        )
        file_id = response.json()["id"]
        logger.info({"event": "drive_file_uploaded", "name": name, "file_id": file_id, "bytes": len(content)})
        return file_id

    async def download_file(self, file_id: str) -> str:
        response = await self._send(
            "download_file",
            "GET",
            f"{self._api_base}/files/{file_id}",
            params={"alt": "media"},
        )
        return response.text

    async def update_file(self, file_id: str, content: str) -> None:
        await self._send(
            "update_file",
            "PATCH",
            f"{self._upload_base}/files/{file_id}",
            params={"uploadType": "media"},
            headers={"Content-Type": "application/json"},
            content=content.encode("utf-8"),
        )
        logger.info({"event": "drive_file_updated", "file_id": file_id, "bytes": len(content)})

    async def list_files(self, query: str | None = None, *, spaces: str | None = None) -> List[DriveFile]:
        final_query = f"trashed=false and {query}" if query else "trashed=false"
        return await self._search("list_files", final_query, spaces=spaces)

    async def delete_file(self, file_id: str) -> None:
        await self._send("delete_file", "DELETE", f"{self._api_base}/files/{file_id}")
        logger.info({"event": "drive_file_deleted", "file_id": file_id})

    async def _search(self, operation: str, query: str, *, spaces: str | None = None) -> List[DriveFile]:
        params = {"q": query, "fields": FILE_FIELDS}
        if spaces:
            params["spaces"] = spaces
        response = await self._send(operation, "GET", f"{self._api_base}/files", params=params)
        return [DriveFile.from_api(item) for item in response.json().get("files") or []]

    async def _send(self, operation: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        token = self._broker.get_access_token()
        headers = dict(kwargs.pop("headers", None) or {})
        headers["Authorization"] = f"Bearer {token}"
        try:
            response, _ = await self._http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPStatusError as exc:
            raise TransportError(operation, exc.response.status_code, exc.response.text[:200]) from exc
        except httpx.RequestError as exc:
            raise TransportError(operation, None, exc.__class__.__name__) from exc
        return response


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _multipart_body(boundary: str, metadata: Dict[str, Any], content: str) -> bytes:
    delimiter = f"\r\n--{boundary}\r\n"
    close_delimiter = f"\r\n--{boundary}--"
    body = (
        delimiter
        + "Content-Type: application/json; charset=UTF-8\r\n\r\n"
        + json.dumps(metadata)
        + delimiter
        + "Content-Type: application/json\r\n\r\n"
        + content
        + close_delimiter
    )
    return body.encode("utf-8")
