"""File storage for form uploads: local disk or Supabase Storage."""

from __future__ import annotations

import logging
import os
import shutil
import uuid
from pathlib import Path
from urllib.parse import quote

import httpx

from structbi.errors import InternalError, ValidationError
from structbi.files import DeleteOutcome, UploadedFile
from structbi.messages import t


_logger = logging.getLogger("structbi.files")

DEFAULT_UPLOAD_DIR = "/var/www/structbi-web-uploaded"
DEFAULT_MAX_BYTES = 5 * 1024 * 1024
SUPPORTED_EXTENSIONS = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".pdf": "application/pdf",
    ".txt": "text/plain",
    ".csv": "text/csv",
    ".json": "application/json",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".zip": "application/zip",
}


def _supabase_url() -> str:
    return (os.getenv("SUPABASE_URL") or "").strip().rstrip("/")


def _supabase_service_role_key() -> str:
    return (os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "").strip()


def using_supabase_storage() -> bool:
    return bool(_supabase_url() and _supabase_service_role_key())


def forms_bucket() -> str:
    return (os.getenv("SUPABASE_STORAGE_BUCKET_FORMS") or "forms").strip()


def upload_root() -> str:
    return os.getenv("STRUCTBI_UPLOAD_DIR", DEFAULT_UPLOAD_DIR)


def max_upload_bytes() -> int:
    return int(os.getenv("STRUCTBI_MAX_UPLOAD_BYTES", str(DEFAULT_MAX_BYTES)))


def _human_size(size: int) -> str:
    if size >= 1024 * 1024:
        return f"{size / (1024 * 1024):g}MB"
    if size >= 1024:
        return f"{size / 1024:g}KB"
    return f"{size}B"


def check_upload(file: UploadedFile, limit: int) -> None:
    extension = Path(file.filename).suffix.lower()
    if extension not in SUPPORTED_EXTENSIONS:
        raise ValidationError("FILE_UNSUPPORTED", t("file.unsupported"), file.name, {"filename": file.filename})
    if file.size > limit:
        raise ValidationError("FILE_TOO_LARGE", t("file.too_large", limit=_human_size(limit)), file.name, {"size": file.size})


def storage_name(filename: str) -> str:
    safe_name = Path(filename.replace("\\", "/")).name.replace("..", "_").replace(" ", "_")
    return f"{uuid.uuid4().hex[:12]}_{safe_name}"


class LocalFileStorage:
    def __init__(self, root: str | None = None, max_bytes: int | None = None) -> None:
        self.root = root or upload_root()
        self.max_bytes = max_bytes or max_upload_bytes()

    def _path(self, base_dir: str, relative_path: str) -> Path:
        return Path(base_dir) / relative_path

    def validate(self, file: UploadedFile) -> None:
        check_upload(file, self.max_bytes)

    def save(self, base_dir: str, file: UploadedFile) -> str:
        self.validate(file)
        name = storage_name(file.filename)
        try:
            folder = Path(base_dir)
            folder.mkdir(parents=True, exist_ok=True)
            (folder / name).write_bytes(file.data)
        except OSError as exc:
            raise InternalError.opaque("FILE_UPLOAD_FAILED", f"{base_dir}/{name}: {exc}", file.name) from exc
        return name

    def exists(self, base_dir: str, relative_path: str) -> bool:
        return self._path(base_dir, relative_path).is_file()

    def read(self, base_dir: str, relative_path: str) -> bytes:
        return self._path(base_dir, relative_path).read_bytes()

    def delete(self, base_dir: str, relative_path: str) -> DeleteOutcome:
        path = self._path(base_dir, relative_path)
        try:
            path.unlink()
        except FileNotFoundError:
            return DeleteOutcome.NOT_FOUND
        except OSError as exc:
            _logger.warning("file_delete_error path=%s error=%s", path, exc)
            return DeleteOutcome.FAILED
        return DeleteOutcome.DELETED

    def purge(self, base_dir: str) -> None:
        shutil.rmtree(base_dir, ignore_errors=True)


class SupabaseFileStorage:
    """Supabase Storage objects keyed ``<base_dir>/<name>`` inside the forms bucket."""

    def __init__(self, bucket: str | None = None, max_bytes: int | None = None, client: httpx.Client | None = None) -> None:
        self.root = ""
        self.bucket = (bucket or forms_bucket()).strip()
        self.max_bytes = max_bytes or max_upload_bytes()
        self._client = client

    def _headers(self, content_type: str | None = None) -> dict:
        headers = {
            "Authorization": f"Bearer {_supabase_service_role_key()}",
            "apikey": _supabase_service_role_key(),
            "x-upsert": "true",
        }
        if content_type:
            headers["Content-Type"] = content_type
        return headers

    def _url(self, storage_key: str) -> str:
        return f"{_supabase_url()}/storage/v1/object/{self.bucket}/{quote(storage_key, safe='/')}"

    def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self._client is not None:
            return self._client.request(method, url, **kwargs)
        with httpx.Client(timeout=30.0) as client:
            return client.request(method, url, **kwargs)

    def validate(self, file: UploadedFile) -> None:
        check_upload(file, self.max_bytes)

    def save(self, base_dir: str, file: UploadedFile) -> str:
        self.validate(file)
        name = storage_name(file.filename)
        content_type = file.content_type or SUPPORTED_EXTENSIONS[Path(file.filename).suffix.lower()]
        key = f"{base_dir}/{name}"
        try:
            res = self._request("POST", self._url(key), headers=self._headers(content_type), content=file.data)
        except httpx.HTTPError as exc:
            raise InternalError.opaque("FILE_UPLOAD_FAILED", f"{key}: {exc}", file.name) from exc
        if res.status_code >= 400:
            raise InternalError.opaque("FILE_UPLOAD_FAILED", f"supabase_upload_failed:{res.status_code}:{res.text}", file.name)
        return name

    def exists(self, base_dir: str, relative_path: str) -> bool:
        try:
            res = self._request("HEAD", self._url(f"{base_dir}/{relative_path}"), headers=self._headers())
        except httpx.HTTPError:
            _logger.warning("file_exists_check_failed base=%s path=%s", base_dir, relative_path)
            return False
        return res.status_code < 400

    def read(self, base_dir: str, relative_path: str) -> bytes:
        res = self._request("GET", self._url(f"{base_dir}/{relative_path}"), headers=self._headers())
        if res.status_code >= 400:
            raise FileNotFoundError(f"supabase_download_failed:{res.status_code}")
        return res.content

    def delete(self, base_dir: str, relative_path: str) -> DeleteOutcome:
        try:
            res = self._request("DELETE", self._url(f"{base_dir}/{relative_path}"), headers=self._headers())
        except httpx.HTTPError as exc:
            _logger.warning("file_delete_error base=%s path=%s error=%s", base_dir, relative_path, exc)
            return DeleteOutcome.FAILED
        if res.status_code in (400, 404):
            return DeleteOutcome.NOT_FOUND
        if res.status_code >= 400:
            return DeleteOutcome.FAILED
        return DeleteOutcome.DELETED

    def purge(self, base_dir: str) -> None:
        list_url = f"{_supabase_url()}/storage/v1/object/list/{self.bucket}"
        res = self._request("POST", list_url, headers=self._headers("application/json"), json={"prefix": base_dir, "limit": 1000})
        if res.status_code >= 400:
            _logger.warning("file_purge_list_failed base=%s status=%s", base_dir, res.status_code)
            return
        prefixes = [f"{base_dir}/{item['name']}" for item in res.json() if item.get("name")]
        if not prefixes:
            return
        self._request("DELETE", f"{_supabase_url()}/storage/v1/object/{self.bucket}", headers=self._headers("application/json"), json={"prefixes": prefixes})


def open_storage():
    if using_supabase_storage():
        _logger.info("file_storage=supabase bucket=%s", forms_bucket())
        return SupabaseFileStorage()
    _logger.info("file_storage=local root=%s", upload_root())
    return LocalFileStorage()
