# portal_core/storage.py
"""
Core Storage Utilities.

Every object-storage operation of the admin portal goes through here:

- StorageBackend implementations are thin and synchronous (the Supabase client
  is synchronous). SupabaseStorageBackend is used in production,
  LocalStorageBackend keeps objects under a directory for development and tests.
- StorageGateway is the async, typed wrapper the upload sessions talk to. It runs
  backend calls in a worker thread and translates every backend failure into a
  single StorageError carrying the original cause.

Moving an object is one contract per backend (StorageBackend.relocate): a
native server-side copy where the bucket supports it, download + re-upload
otherwise. Callers never pick a strategy.
"""
import asyncio
import logging
import mimetypes
import shutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, List, Optional
from urllib.parse import quote

from storage3.exceptions import StorageApiError

from portal_core import path_policy
from portal_core.config import settings
from portal_core.errors import StorageError, ValidationError
from portal_core.models import FileType, IncomingFile, StoredFile
from portal_core.supabase_client import get_supabase_client

logger = logging.getLogger("Portal_Core").getChild("Storage")

LIST_PAGE_SIZE = 100


def guess_content_type(path: str) -> str:
    return mimetypes.guess_type(path)[0] or "application/octet-stream"

# --- Backends ---

class StorageBackend(ABC):
    """Synchronous object-storage primitives. Paths are relative to the bucket."""

    backend_name = "base"

    @abstractmethod
    def upload(self, bucket: str, path: str, data: bytes, *, content_type: str,
               cache_control: str, upsert: bool = False) -> None: ...

    @abstractmethod
    def download(self, bucket: str, path: str) -> bytes: ...

    @abstractmethod
    def remove(self, bucket: str, paths: List[str]) -> None: ...

    @abstractmethod
    def copy(self, bucket: str, src_path: str, dst_path: str) -> None: ...

    @abstractmethod
    def list_folder(self, bucket: str, prefix: str) -> List[str]:
        """Every object path below `prefix`, recursively."""

    @abstractmethod
    def public_url(self, bucket: str, path: str) -> str: ...

    def supports_copy(self, bucket: str) -> bool:
        return True

    def relocate(self, bucket: str, src_path: str, dst_path: str) -> None:
        """Puts a copy of src at dst. The source is left in place."""
        if self.supports_copy(bucket):
            self.copy(bucket, src_path, dst_path)
            return
        data = self.download(bucket, src_path)
        self.upload(
            bucket, dst_path, data,
            content_type=guess_content_type(dst_path),
            cache_control=settings.STORAGE_CACHE_CONTROL,
            upsert=False,
        )

    def remove_folder(self, bucket: str, prefix: str) -> int:
        paths = self.list_folder(bucket, prefix)
        if paths:
            self.remove(bucket, paths)
        return len(paths)


class SupabaseStorageBackend(StorageBackend):
    """Supabase Storage. Expects a client created with the service role key."""

    backend_name = "supabase"

    def __init__(self, client, copy_unsupported_buckets: Iterable[str] = ()):
        self.client = client
        self._copy_unsupported = frozenset(copy_unsupported_buckets)

    def _bucket(self, bucket: str):
        return self.client.storage.from_(bucket)

    def upload(self, bucket, path, data, *, content_type, cache_control, upsert=False):
        self._bucket(bucket).upload(
            path=path,
            file=data,
            file_options={
                "cache-control": cache_control,
                "content-type": content_type,
                "upsert": "true" if upsert else "false",
            },
        )

    def download(self, bucket, path):
        return self._bucket(bucket).download(path)

    def remove(self, bucket, paths):
        self._bucket(bucket).remove(list(paths))

    def copy(self, bucket, src_path, dst_path):
        self._bucket(bucket).copy(src_path, dst_path)

    def list_folder(self, bucket, prefix):
        found: List[str] = []
        offset = 0
        while True:
            entries = self._bucket(bucket).list(prefix, {"limit": LIST_PAGE_SIZE, "offset": offset})
            for entry in entries or []:
                name = entry.get("name")
                if not name or name == ".emptyFolderPlaceholder":
                    continue
                full_path = f"{prefix}/{name}"
                # Folders come back without an id
                if entry.get("id") is None:
                    found.extend(self.list_folder(bucket, full_path))
                else:
                    found.append(full_path)
            if not entries or len(entries) < LIST_PAGE_SIZE:
                break
            offset += LIST_PAGE_SIZE
        return found

    def public_url(self, bucket, path):
        # Some storage3 releases append a bare '?' to public URLs
        return self._bucket(bucket).get_public_url(path).rstrip("?")

    def supports_copy(self, bucket):
        return bucket not in self._copy_unsupported


class LocalStorageBackend(StorageBackend):
    """Objects stored as {base_dir}/{bucket}/{path} on local disk."""

    backend_name = "local"

    def __init__(self, base_dir, public_base_url: str, copy_unsupported_buckets: Iterable[str] = ()):
        self._base_dir = Path(base_dir).resolve()
        self._base_dir.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")
        self._copy_unsupported = frozenset(copy_unsupported_buckets)
        logger.debug(f"LocalStorageBackend initialized with base_dir={self._base_dir}")

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _bucket_dir(self, bucket: str) -> Path:
        if not bucket or "/" in bucket or "\\" in bucket or bucket in (".", ".."):
            raise ValueError(f"Invalid bucket name: '{bucket}'")
        return self._base_dir / bucket

    def _object_path(self, bucket: str, path: str) -> Path:
        bucket_dir = self._bucket_dir(bucket).resolve()
        candidate = (bucket_dir / path).resolve()
        try:
            candidate.relative_to(bucket_dir)
        except ValueError as e:
            raise ValueError(f"Path escapes bucket '{bucket}': {path}") from e
        if candidate == bucket_dir:
            raise ValueError("Object path cannot be empty")
        return candidate

    def upload(self, bucket, path, data, *, content_type, cache_control, upsert=False):
        target = self._object_path(bucket, path)
        if target.exists() and not upsert:
            raise FileExistsError(f"Object already exists: {bucket}/{path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    def download(self, bucket, path):
        return self._object_path(bucket, path).read_bytes()

    def remove(self, bucket, paths):
        # Missing objects are ignored, like Supabase's remove()
        for path in paths:
            self._object_path(bucket, path).unlink(missing_ok=True)

    def copy(self, bucket, src_path, dst_path):
        src = self._object_path(bucket, src_path)
        dst = self._object_path(bucket, dst_path)
        if dst.exists():
            raise FileExistsError(f"Object already exists: {bucket}/{dst_path}")
        dst.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src, dst)

    def list_folder(self, bucket, prefix):
        folder = self._object_path(bucket, prefix)
        if not folder.is_dir():
            return []
        bucket_dir = self._bucket_dir(bucket).resolve()
        return sorted(p.relative_to(bucket_dir).as_posix() for p in folder.rglob("*") if p.is_file())

    def remove_folder(self, bucket, prefix):
        folder = self._object_path(bucket, prefix)
        if not folder.is_dir():
            return 0
        count = sum(1 for p in folder.rglob("*") if p.is_file())
        shutil.rmtree(folder)
        return count

    def public_url(self, bucket, path):
        return f"{self.public_base_url}/{bucket}/{quote(path)}"

    def supports_copy(self, bucket):
        return bucket not in self._copy_unsupported

# --- Gateway ---

class StorageGateway:
    """Async wrapper over a StorageBackend; every failure surfaces as StorageError."""

    def __init__(self, backend: StorageBackend):
        self.backend = backend

    async def _call(self, action: str, bucket: str, path: Optional[str], fn, *args, **kwargs):
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except StorageApiError as e:
            logger.error(f"Supabase storage error during {action} ({bucket}/{path}): {getattr(e, 'message', e)} (Status: {getattr(e, 'status', None)})")
            raise StorageError(f"Failed to {action}", bucket=bucket, path=path, cause=e) from e
        except Exception as e:
            logger.error(f"Storage error during {action} ({bucket}/{path}): {e}", exc_info=True)
            raise StorageError(f"Failed to {action}", bucket=bucket, path=path, cause=e) from e

    def public_url(self, bucket: str, path: str) -> str:
        try:
            return self.backend.public_url(bucket, path)
        except Exception as e:
            raise StorageError("Failed to resolve public URL", bucket=bucket, path=path, cause=e) from e

    async def upload(self, file: IncomingFile, bucket: str, path: str, *,
                     cache_control: Optional[str] = None, upsert: bool = False) -> StoredFile:
        logger.info(f"Uploading '{file.name}' ({file.size} bytes) to {bucket}/{path}")
        await self._call(
            "upload image", bucket, path, self.backend.upload, bucket, path, file.data,
            content_type=file.content_type,
            cache_control=cache_control or settings.STORAGE_CACHE_CONTROL,
            upsert=upsert,
        )
        return StoredFile(bucket=bucket, path=path, url=self.public_url(bucket, path))

    async def download(self, bucket: str, path: str) -> bytes:
        return await self._call("download image", bucket, path, self.backend.download, bucket, path)

    async def delete(self, bucket: str, path: str) -> None:
        logger.info(f"Deleting {bucket}/{path}")
        await self._call("delete image", bucket, path, self.backend.remove, bucket, [path])

    async def delete_folder(self, bucket: str, prefix: str) -> int:
        removed = await self._call("delete folder", bucket, prefix, self.backend.remove_folder, bucket, prefix)
        logger.info(f"Deleted folder {bucket}/{prefix}/ ({removed} object(s))")
        return removed

    async def copy(self, bucket: str, src_path: str, dst_path: str) -> None:
        await self._call("copy image", bucket, src_path, self.backend.copy, bucket, src_path, dst_path)

    async def move(self, bucket: str, src_path: str, dst_path: str) -> StoredFile:
        """
        Relocates an object and deletes the source.
        A failed copy leaves the source untouched and raises StorageError. A failed
        delete of the source is only logged: the destination exists and is usable.
        """
        await self._call("move image", bucket, src_path, self.backend.relocate, bucket, src_path, dst_path)
        try:
            await self._call("delete moved source", bucket, src_path, self.backend.remove, bucket, [src_path])
        except StorageError as e:
            logger.warning(f"Moved {bucket}/{src_path} -> {dst_path} but could not delete the source; left for the sweep job: {e}")
        return StoredFile(bucket=bucket, path=dst_path, url=self.public_url(bucket, dst_path))

    # --- Entity-level operations ---

    async def upload_entity_image(self, file: IncomingFile, entity_type: str, entity_id: str,
                                  file_type: FileType) -> StoredFile:
        """Validates against the role's asset class, then uploads straight to the final location."""
        rule = path_policy.resolve_rule(entity_type, file_type)
        result = path_policy.validate(file, rule.asset_class)
        if not result.is_valid:
            logger.info(f"[{entity_type}:{entity_id}] Rejected '{file.name}': {result.error}")
            raise ValidationError(result.error or "Invalid image file", asset_class=rule.asset_class.name)
        bucket, path = path_policy.build_path(entity_type, entity_id, file_type, file.name)
        return await self.upload(file, bucket, path)

    async def cleanup_entity_folder(self, entity_type: str, entity_id: str) -> int:
        """Deletes {entity_id}/ in every bucket the entity type uses. Tries all buckets before raising."""
        prefix = path_policy.entity_prefix(entity_id)
        removed = 0
        failures: List[StorageError] = []
        for bucket in path_policy.entity_buckets(entity_type):
            try:
                removed += await self.delete_folder(bucket, prefix)
            except StorageError as e:
                failures.append(e)
        if failures:
            raise StorageError(
                f"Failed to clean up {len(failures)} bucket(s) for {entity_type} {entity_id}",
                bucket=failures[0].bucket, path=prefix, cause=failures[0],
            )
        return removed

    async def upload_temporary(self, file: IncomingFile, bucket: str, asset_class: path_policy.AssetClass,
                               session_id: str, prefix: str) -> StoredFile:
        result = path_policy.validate(file, asset_class)
        if not result.is_valid:
            raise ValidationError(result.error or "Invalid image file", asset_class=asset_class.name)
        path = path_policy.build_temp_path(session_id, file.name, prefix)
        return await self.upload(file, bucket, path)

    async def move_to_permanent(self, bucket: str, temp_path: str, entity_id: str) -> StoredFile:
        new_path = path_policy.permanent_path_from_temp(temp_path, entity_id)
        logger.info(f"[{entity_id}] Moving {bucket}/{temp_path} to permanent location {new_path}")
        return await self.move(bucket, temp_path, new_path)


async def get_storage_gateway() -> StorageGateway:
    """Builds the gateway for the configured backend."""
    if settings.STORAGE_BACKEND == "local":
        backend = LocalStorageBackend(
            settings.LOCAL_STORAGE_DIR,
            settings.LOCAL_PUBLIC_BASE_URL,
            settings.STORAGE_COPY_UNSUPPORTED_BUCKETS,
        )
    else:
        client = await get_supabase_client(use_service_key=True)
        backend = SupabaseStorageBackend(client, settings.STORAGE_COPY_UNSUPPORTED_BUCKETS)
    logger.info(f"Storage gateway ready (backend: {backend.backend_name})")
    return StorageGateway(backend)
