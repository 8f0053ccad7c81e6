"""
FileSystem operations.

Each operation hands the Operation Invoker a builder for one
OperationRequest. Every method accepts either an options mapping or positional
arguments followed by ``success`` and ``error`` callbacks, e.g.:

    await fs.readdir("/")
    await fs.readdir({"path": "/", "success": on_items})
    await fs.copy("/a.txt", "/backup", overwrite=True)
"""

from __future__ import annotations

import json
import mimetypes
import os
import posixpath
import uuid
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from puterfs.FileSystem.invoker import normalize_options
from puterfs.FileSystem.models import Environment, OperationOptions, OperationRequest

UploadSource = Union[str, os.PathLike, Tuple[str, Union[bytes, str]]]


def resolve_path(path: Optional[str], app_id: Optional[str], env: Environment = Environment.APP) -> str:
    """
    Resolve a path the way the server expects it.

    Relative paths belong to the calling app and live under
    ``~/AppData/<app_id>/``. Absolute (``/``) and home (``~``) paths are
    passed through, as is everything in the GUI environment.
    """
    if env == Environment.GUI:
        return path or "."
    if not path:
        path = "."
    if path.startswith("/") or path.startswith("~") or not app_id:
        return path
    return posixpath.normpath(posixpath.join("~/AppData", app_id, path))


def _require(options: OperationOptions, name: str) -> Any:
    value = options.params.get(name)
    if value is None or value == "":
        raise TypeError(f"Missing required argument: '{name}'")
    return value


def _read_upload_source(source: UploadSource) -> Tuple[str, bytes]:
    """Turn one upload source into (file name, content)."""
    if isinstance(source, tuple):
        name, content = source
        if isinstance(content, str):
            content = content.encode("utf-8")
        return name, bytes(content)

    local = Path(source)
    return local.name, local.read_bytes()


def _upload_sources(items: Any) -> List[UploadSource]:
    if isinstance(items, (bytes, bytearray)):
        raise TypeError("Raw content must be passed as a (name, content) tuple")
    if isinstance(items, (str, os.PathLike, tuple)):
        return [items]
    if isinstance(items, Iterable):
        return list(items)
    raise TypeError(f"Cannot upload {type(items).__name__}")


class FileSystemOperations:
    """
    Operation bindings mixed into the FileSystem facade.

    The host class provides ``_invoke``, ``session``, ``env`` and
    ``connection``. Each public method normalizes its arguments and hands
    a request builder to the invoker, so argument errors reach the
    ``error`` callback like any other failure. Only a malformed call
    (too many positional arguments, non-callable callbacks) raises
    before a callback is known.
    """

    def resolve_path(self, path: Optional[str]) -> str:
        return resolve_path(path, self.session.app_id, self.env)

    def _path_or_uid(self, options: OperationOptions, key: str = "path") -> Dict[str, Any]:
        uid = options.params.get("uid")
        if uid:
            return {"uid": uid}
        return {"path": self.resolve_path(_require(options, key))}

    @property
    def _socket_id(self) -> Optional[str]:
        return self.connection.socket_id

    async def _operation(
        self,
        name: str,
        args: Tuple[Any, ...],
        kwargs: Dict[str, Any],
        positional: Tuple[str, ...],
        build: Callable[[OperationOptions], OperationRequest],
        transform: Optional[Callable[[Any], Any]] = None,
    ) -> Any:
        options = normalize_options(args, kwargs, positional)
        return await self._invoke(options, partial(build, options), name, transform)

    # =========================================================================
    # Read-only
    # =========================================================================

    async def readdir(self, *args, **kwargs) -> Any:
        """List a directory. ``readdir(path, success=None, error=None)``"""
        return await self._operation("readdir", args, kwargs, ("path",), self._readdir_request)

    def _readdir_request(self, options: OperationOptions) -> OperationRequest:
        return OperationRequest(
            "/readdir", payload={"path": self.resolve_path(_require(options, "path"))}
        )

    async def stat(self, *args, **kwargs) -> Any:
        """
        Get metadata for one entry. ``stat(path, success=None, error=None)``

        Options: uid, return_subdomains, return_permissions,
        return_versions, return_size.
        """
        return await self._operation("stat", args, kwargs, ("path",), self._stat_request)

    def _stat_request(self, options: OperationOptions) -> OperationRequest:
        payload = self._path_or_uid(options)
        payload.update(
            return_subdomains=bool(options.get("return_subdomains", False)),
            return_permissions=bool(options.get("return_permissions", False)),
            return_versions=bool(options.get("return_versions", False)),
            return_size=bool(options.get("return_size", False)),
        )
        return OperationRequest("/stat", payload=payload)

    async def space(self, *args, **kwargs) -> Any:
        """Storage usage and capacity. ``space(success=None, error=None)``"""
        return await self._operation(
            "df", args, kwargs, (), lambda options: OperationRequest("/df", method="GET")
        )

    async def read(self, *args, **kwargs) -> bytes:
        """Download a file's content. ``read(path, success=None, error=None)``"""
        return await self._operation("read", args, kwargs, ("path",), self._read_request)

    def _read_request(self, options: OperationOptions) -> OperationRequest:
        return OperationRequest(
            "/read",
            method="GET",
            query={"file": self.resolve_path(_require(options, "path"))},
            response_type="bytes",
        )

    async def sign(self, *args, **kwargs) -> Any:
        """
        Sign entries for an app. ``sign(app_uid, items, success=None, error=None)``

        Each item is a mapping with ``uid`` or ``path`` and an ``action``
        ("read" or "write").
        """
        return await self._operation("sign", args, kwargs, ("app_uid", "items"), self._sign_request)

    def _sign_request(self, options: OperationOptions) -> OperationRequest:
        items = _require(options, "items")
        if isinstance(items, dict):
            items = [items]

        signed = []
        for item in items:
            entry = dict(item)
            if not entry.get("uid") and not entry.get("path"):
                raise TypeError("Each sign item needs a 'uid' or 'path'")
            if entry.get("path"):
                entry["path"] = self.resolve_path(entry["path"])
            entry.setdefault("action", "read")
            signed.append(entry)

        payload = {"items": signed, "app_uid": options.get("app_uid", self.session.app_id)}
        return OperationRequest("/sign", payload=payload)

    # =========================================================================
    # Mutating
    # =========================================================================

    async def mkdir(self, *args, **kwargs) -> Any:
        """
        Create a directory. ``mkdir(path, success=None, error=None)``

        Options: overwrite, dedupe_name, create_missing_parents.
        """
        return await self._operation("mkdir", args, kwargs, ("path",), self._mkdir_request)

    def _mkdir_request(self, options: OperationOptions) -> OperationRequest:
        path = self.resolve_path(_require(options, "path"))
        payload = {
            "parent": posixpath.dirname(path),
            "path": posixpath.basename(path),
            "overwrite": bool(options.get("overwrite", False)),
            "dedupe_name": bool(options.get("dedupe_name", False)),
            "create_missing_parents": bool(options.get("create_missing_parents", False)),
        }
        return OperationRequest("/mkdir", payload=payload)

    async def copy(self, *args, **kwargs) -> Any:
        """
        Copy an entry into a directory. ``copy(source, destination, success=None, error=None)``

        Options: overwrite, new_name, create_missing_parents, dedupe_name.
        """
        return await self._operation(
            "copy", args, kwargs, ("source", "destination"), self._copy_request
        )

    def _copy_request(self, options: OperationOptions) -> OperationRequest:
        payload = {
            "source": self.resolve_path(_require(options, "source")),
            "destination": self.resolve_path(_require(options, "destination")),
            "overwrite": bool(options.get("overwrite", False)),
            "new_name": options.get("new_name"),
            "create_missing_parents": bool(options.get("create_missing_parents", False)),
            "dedupe_name": bool(options.get("dedupe_name", False)),
            "original_client_socket_id": self._socket_id,
        }
        return OperationRequest("/copy", payload=payload)

    async def move(self, *args, **kwargs) -> Any:
        """
        Move an entry into a directory. ``move(source, destination, success=None, error=None)``

        Options: overwrite, new_name, create_missing_parents, new_metadata.
        """
        return await self._operation(
            "move", args, kwargs, ("source", "destination"), self._move_request
        )

    def _move_request(self, options: OperationOptions) -> OperationRequest:
        payload = {
            "source": self.resolve_path(_require(options, "source")),
            "destination": self.resolve_path(_require(options, "destination")),
            "overwrite": bool(options.get("overwrite", False)),
            "new_name": options.get("new_name"),
            "create_missing_parents": bool(options.get("create_missing_parents", False)),
            "new_metadata": options.get("new_metadata"),
            "original_client_socket_id": self._socket_id,
        }
        return OperationRequest("/move", payload=payload)

    async def rename(self, *args, **kwargs) -> Any:
        """Rename an entry in place. ``rename(path, new_name, success=None, error=None)``"""
        return await self._operation(
            "rename", args, kwargs, ("path", "new_name"), self._rename_request
        )

    def _rename_request(self, options: OperationOptions) -> OperationRequest:
        payload = self._path_or_uid(options)
        payload["new_name"] = _require(options, "new_name")
        payload["original_client_socket_id"] = self._socket_id
        return OperationRequest("/rename", payload=payload)

    async def delete(self, *args, **kwargs) -> Any:
        """
        Delete one or more entries. ``delete(paths, success=None, error=None)``

        Options: recursive (default True), descendants_only.
        """
        return await self._operation("delete", args, kwargs, ("paths",), self._delete_request)

    def _delete_request(self, options: OperationOptions) -> OperationRequest:
        paths = _require(options, "paths")
        if isinstance(paths, str):
            paths = [paths]
        payload = {
            "paths": [self.resolve_path(p) for p in paths],
            "recursive": bool(options.get("recursive", True)),
            "descendants_only": bool(options.get("descendants_only", False)),
        }
        return OperationRequest("/delete", payload=payload)

    async def upload(self, *args, **kwargs) -> Any:
        """
        Upload files into a directory. ``upload(items, dir_path, success=None, error=None)``

        ``items`` is a local path, a ``(name, content)`` tuple, or a list
        of either. Options: overwrite, dedupe_name (default True),
        create_missing_parents, name (single item only).
        """
        return await self._operation(
            "batch", args, kwargs, ("items", "dir_path"), self._upload_request, _single_or_list
        )

    def _upload_request(self, options: OperationOptions) -> OperationRequest:
        sources = _upload_sources(_require(options, "items"))
        if not sources:
            raise TypeError("Nothing to upload")
        if options.get("name") and len(sources) > 1:
            raise TypeError("'name' can only be used when uploading a single item")

        return self._batch_request(
            [_read_upload_source(s) for s in sources],
            self.resolve_path(options.get("dir_path", ".")),
            options,
        )

    async def write(self, *args, **kwargs) -> Any:
        """
        Create or replace a file. ``write(path, data, success=None, error=None)``

        Options: overwrite (default True), dedupe_name (default False),
        create_missing_parents.
        """
        return await self._operation(
            "batch", args, kwargs, ("path", "data"), self._write_request, _single_or_list
        )

    def _write_request(self, options: OperationOptions) -> OperationRequest:
        path = self.resolve_path(_require(options, "path"))
        data = options.params.get("data")
        if data is None:
            data = b""
        if isinstance(data, str):
            data = data.encode("utf-8")

        options.params.setdefault("overwrite", True)
        options.params.setdefault("dedupe_name", False)
        return self._batch_request(
            [(posixpath.basename(path), bytes(data))],
            posixpath.dirname(path) or ".",
            options,
        )

    def _batch_request(
        self,
        files: List[Tuple[str, bytes]],
        dir_path: str,
        options: OperationOptions,
    ) -> OperationRequest:
        """Build the multipart /batch request used for uploads."""
        operation_id = str(uuid.uuid4())
        name_override = options.get("name")
        fileinfo, operations, parts = [], [], []

        for index, (name, content) in enumerate(files):
            name = name_override or name
            mime = mimetypes.guess_type(name)[0] or "application/octet-stream"
            fileinfo.append(_json({"name": name, "type": mime, "size": len(content)}))
            operations.append(_json({
                "op": "write",
                "operation_id": operation_id,
                "path": dir_path,
                "name": name,
                "overwrite": bool(options.get("overwrite", False)),
                "dedupe_name": bool(options.get("dedupe_name", True)),
                "create_missing_ancestors": bool(options.get("create_missing_parents", False)),
                "item_upload_id": index,
            }))
            parts.append(("file", (name, content, mime)))

        form: Dict[str, Any] = {
            "operation_id": operation_id,
            "fileinfo": fileinfo,
            "operation": operations,
        }
        if self._socket_id:
            form["socket_id"] = self._socket_id
            form["original_client_socket_id"] = self._socket_id

        return OperationRequest("/batch", form=form, files=parts)


def _json(value: Dict[str, Any]) -> str:
    return json.dumps(value, separators=(",", ":"))


def _single_or_list(result: Any) -> Any:
    if isinstance(result, dict) and "results" in result:
        result = result["results"]
    if isinstance(result, list) and len(result) == 1:
        return result[0]
    return result


__all__ = ["FileSystemOperations", "resolve_path"]
