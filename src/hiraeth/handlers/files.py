"""File request handlers for Hiraeth.

Implements the JSON operations that drive the lifecycle manager:
    - Prepare (POST /prepare)
    - Append (POST /append/{id})
    - Finish (POST /finish/{id})
    - Upload (POST /upload)
    - List (GET /files/)
    - Describe (GET /files/{id})
    - Rename (POST /files/{id}/rename)
    - Delete (DELETE /files/{id})
    - Download (GET|POST /downloads/{id})
"""

import asyncio
import json
import logging
import urllib.parse
from typing import Any

import filetype
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask
from starlette.datastructures import FormData, UploadFile

from hiraeth.auth import can_download, hash_secret
from hiraeth.errors import AccessDenied, InvalidArgument
from hiraeth.metadata.models import StoredObject
from hiraeth.validation import parse_duration, validate_display_name, validate_object_id

logger = logging.getLogger(__name__)


def object_to_json(obj: StoredObject) -> dict[str, Any]:
    """Render an object's public metadata. The secret hash is never exposed."""
    return {
        "id": obj.id,
        "filename": obj.display_name,
        "expiry": obj.expiry,
        "protected": obj.protected,
        "created_at": obj.created_at,
    }


def content_disposition(filename: str, inline: bool = False) -> str:
    """Build a ``Content-Disposition`` header for ``filename``.

    Non-ASCII names are carried in the RFC 5987 ``filename*`` parameter with
    an ASCII fallback.
    """
    fallback = filename.encode("ascii", "replace").decode("ascii").replace('"', "_")
    quoted = urllib.parse.quote(filename, safe="")
    disposition = "inline" if inline else "attachment"
    return f"{disposition}; filename=\"{fallback}\"; filename*=UTF-8''{quoted}"


def _parse_amount(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidArgument(f"Invalid duration amount: {value!r}") from None


class FileHandler:
    """Handles file upload, query and download requests.

    All handlers access the lifecycle manager and config from ``app.state``.
    The authenticated principal is read from ``request.state.owner_id``,
    which the auth middleware sets.

    Attributes:
        app: The parent FastAPI application.
    """

    def __init__(self, app: FastAPI) -> None:
        """Initialize the file handler.

        Args:
            app: The FastAPI application instance.
        """
        self.app = app

    @property
    def manager(self):
        """Shortcut to the LifecycleManager on app.state."""
        return self.app.state.manager

    @property
    def config(self):
        """Shortcut to the HiraethConfig on app.state."""
        return self.app.state.config

    # -- Request helpers ------------------------------------------------------

    def _owner(self, request: Request) -> int:
        owner_id = getattr(request.state, "owner_id", None)
        if owner_id is None:
            raise AccessDenied("Authentication required", http_status=401)
        return owner_id

    async def _json_body(self, request: Request) -> dict[str, Any]:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise InvalidArgument("Request body is not valid JSON") from None
        if not isinstance(body, dict):
            raise InvalidArgument("Request body must be a JSON object")
        return body

    async def _form(self, request: Request) -> FormData:
        try:
            return await request.form()
        except Exception as exc:
            raise InvalidArgument(f"Malformed form data: {exc}") from exc

    async def _secret(self, password: Any) -> str | None:
        """Hash an optional object password. Empty means unprotected."""
        if not password:
            return None
        if not isinstance(password, str):
            raise InvalidArgument("Password must be a string")
        return await asyncio.to_thread(hash_secret, password, self.config.auth.bcrypt_rounds)

    # -- Chunked uploads ------------------------------------------------------

    async def prepare(self, request: Request) -> Response:
        """Begin a chunked upload.

        Implements: POST /prepare with JSON ``{filename, time, unit, password?}``

        Returns:
            201 with ``{"id": ...}``.
        """
        owner_id = self._owner(request)
        body = await self._json_body(request)

        filename = body.get("filename")
        if not isinstance(filename, str):
            raise InvalidArgument("filename is required")
        if "time" not in body or "unit" not in body:
            raise InvalidArgument("time and unit are required")

        display_name = validate_display_name(filename)
        ttl = parse_duration(_parse_amount(body["time"]), str(body["unit"]))
        secret = await self._secret(body.get("password"))

        object_id = await self.manager.begin_upload(owner_id, display_name, ttl, secret)
        return JSONResponse({"id": object_id}, status_code=201)

    async def append(self, request: Request, object_id: str) -> Response:
        """Append one chunk to a pending upload.

        Implements: POST /append/{id} with multipart field ``chunk``

        Returns:
            204 No Content.
        """
        owner_id = self._owner(request)
        object_id = validate_object_id(object_id)

        form = await self._form(request)
        chunk = form.get("chunk")
        if isinstance(chunk, UploadFile):
            data = await chunk.read()
            await chunk.close()
        elif isinstance(chunk, str):
            data = chunk.encode("utf-8")
        else:
            raise InvalidArgument("chunk is required")

        await self.manager.append_chunk(object_id, owner_id, data)
        return Response(status_code=204)

    async def finish(self, request: Request, object_id: str) -> Response:
        """Commit a pending upload.

        Implements: POST /finish/{id}

        Returns:
            200 with ``{"id", "expiry"}``.
        """
        owner_id = self._owner(request)
        object_id = validate_object_id(object_id)

        obj = await self.manager.finish_upload(object_id, owner_id)
        return JSONResponse({"id": obj.id, "expiry": obj.expiry})

    # -- Single-shot upload -----------------------------------------------------

    async def upload(self, request: Request) -> Response:
        """Store a whole file in one request.

        Implements: POST /upload with multipart ``file``, ``time``, ``unit``,
        ``password?``

        Returns:
            201 with the stored object's metadata.
        """
        owner_id = self._owner(request)
        form = await self._form(request)

        upload = form.get("file")
        if not isinstance(upload, UploadFile):
            raise InvalidArgument("file is required")
        if form.get("time") is None or form.get("unit") is None:
            raise InvalidArgument("time and unit are required")

        display_name = validate_display_name(upload.filename or "")
        ttl = parse_duration(_parse_amount(form.get("time")), str(form.get("unit")))
        secret = await self._secret(form.get("password"))

        try:
            obj = await self.manager.direct_upload(owner_id, display_name, ttl, upload.file, secret)
        finally:
            await upload.close()
        return JSONResponse(object_to_json(obj), status_code=201)

    # -- Owner views ------------------------------------------------------------

    async def list_files(self, request: Request) -> Response:
        """List the caller's committed files.

        Implements: GET /files/
        """
        owner_id = self._owner(request)
        objects = await self.manager.list_for_owner(owner_id)
        return JSONResponse({"files": [object_to_json(obj) for obj in objects]})

    async def describe(self, request: Request, object_id: str) -> Response:
        """Return one owned file's metadata.

        Implements: GET /files/{id}
        """
        owner_id = self._owner(request)
        object_id = validate_object_id(object_id)
        obj = await self.manager.get_owned(object_id, owner_id)
        return JSONResponse(object_to_json(obj))

    async def rename(self, request: Request, object_id: str) -> Response:
        """Change an owned file's display name.

        Implements: POST /files/{id}/rename with JSON ``{filename}``
        """
        owner_id = self._owner(request)
        object_id = validate_object_id(object_id)
        body = await self._json_body(request)

        filename = body.get("filename")
        if not isinstance(filename, str):
            raise InvalidArgument("filename is required")

        await self.manager.rename(object_id, owner_id, validate_display_name(filename))
        return Response(status_code=204)

    async def delete(self, request: Request, object_id: str) -> Response:
        """Delete an owned file immediately.

        Implements: DELETE /files/{id}
        """
        owner_id = self._owner(request)
        object_id = validate_object_id(object_id)
        await self.manager.delete_now(object_id, owner_id)
        return Response(status_code=204)

    # -- Downloads --------------------------------------------------------------

    async def download(self, request: Request, object_id: str) -> Response:
        """Stream a committed file.

        Implements: GET /downloads/{id} and POST /downloads/{id} with form
        field ``password``. The owner never needs the password.

        The file is served inline with its sniffed type when that type is
        listed in ``downloads.inline_types``, otherwise as an attachment.

        Returns:
            200 with the file body.
        """
        object_id = validate_object_id(object_id)
        obj = await self.manager.get_for_download(object_id)

        presented = None
        if request.method == "POST":
            form = await self._form(request)
            password = form.get("password")
            presented = password if isinstance(password, str) else None

        caller_id = getattr(request.state, "owner_id", None)
        if not can_download(obj, caller_id, presented):
            if presented is None:
                raise AccessDenied("This file is password protected")
            raise AccessDenied("Wrong password")

        reader = await self.manager.open_blob(object_id)
        media_type = "application/octet-stream"
        inline = False
        kind = filetype.guess(reader.head())
        if kind is not None and kind.mime in self.config.downloads.inline_types:
            media_type = kind.mime
            inline = True

        return StreamingResponse(
            content=reader,
            status_code=200,
            headers={
                "Content-Disposition": content_disposition(obj.display_name, inline=inline),
                "Content-Length": str(reader.size),
            },
            media_type=media_type,
            background=BackgroundTask(reader.close),
        )
