"""Correlates uploaded files with the file/image columns of a form."""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Protocol

from structbi.errors import InternalError, StructbiError


_logger = logging.getLogger("structbi.files")


@dataclass
class UploadedFile:
    name: str
    filename: str
    content_type: str | None
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


class DeleteOutcome(str, Enum):
    DELETED = "deleted"
    NOT_FOUND = "not_found"
    FAILED = "failed"


class FileStorage(Protocol):
    root: str

    def validate(self, file: UploadedFile) -> None:
        """Raise ``ValidationError`` when ``file`` would be rejected by ``save``."""
        ...

    def save(self, base_dir: str, file: UploadedFile) -> str:
        """Store ``file`` under ``base_dir`` and return its relative path.

        Raises ``ValidationError`` for unsupported or oversized files and
        ``InternalError`` when the write fails.
        """
        ...

    def delete(self, base_dir: str, relative_path: str) -> DeleteOutcome:
        ...

    def exists(self, base_dir: str, relative_path: str) -> bool:
        ...

    def read(self, base_dir: str, relative_path: str) -> bytes:
        ...

    def purge(self, base_dir: str) -> None:
        ...


def compose_base_dir(root: str, id_space: int, form_id: int) -> str:
    return posixpath.join(root or "", str(int(id_space)), str(int(form_id)))


class FileCorrelator:
    """Save/replace/delete lifecycle of one record's files."""

    def __init__(self, storage: FileStorage, id_space: int, form_id: int) -> None:
        self.storage = storage
        self.base_dir = compose_base_dir(storage.root, id_space, form_id)
        self.saved: List[str] = []
        self.pending_deletes: List[str] = []
        self.deleted: List[str] = []

    @staticmethod
    def match(column_identifier: str, uploads: Iterable[UploadedFile]) -> UploadedFile | None:
        for upload in uploads:
            if upload.name == column_identifier and upload.filename:
                return upload
        return None

    def validate(self, files: Iterable[UploadedFile]) -> None:
        for file in files:
            self.storage.validate(file)

    def save(self, file: UploadedFile) -> str:
        path = self.storage.save(self.base_dir, file)
        self.saved.append(path)
        _logger.info("file_saved base=%s path=%s size=%s", self.base_dir, path, file.size)
        return path

    def delete(self, relative_path: str) -> DeleteOutcome:
        outcome = self.storage.delete(self.base_dir, relative_path)
        if outcome == DeleteOutcome.NOT_FOUND:
            _logger.warning("file_delete_missing base=%s path=%s", self.base_dir, relative_path)
        elif outcome == DeleteOutcome.FAILED:
            _logger.error("file_delete_failed base=%s path=%s", self.base_dir, relative_path)
        return outcome

    def replace(self, old_path: str, file: UploadedFile, column: str) -> str:
        """Delete the previous file (when there is one) and save the new one."""
        if old_path:
            outcome = self.delete(old_path)
            if outcome == DeleteOutcome.FAILED:
                raise InternalError.opaque("FILE_DELETE_FAILED", f"could not delete {old_path}", column)
            if outcome == DeleteOutcome.DELETED:
                self.deleted.append(old_path)
        return self.save(file)

    def queue_delete(self, relative_path: str) -> None:
        if relative_path:
            self.pending_deletes.append(relative_path)

    def flush_deletes(self) -> None:
        """Delete queued files; a missing file is fine, an I/O failure aborts."""
        while self.pending_deletes:
            path = self.pending_deletes[0]
            if self.delete(path) == DeleteOutcome.FAILED:
                raise InternalError.opaque("FILE_DELETE_FAILED", f"could not delete {path}", "filepath")
            self.pending_deletes.pop(0)

    def discard_saved(self) -> None:
        """Remove files saved by this correlator after the record write failed."""
        for path in self.saved:
            try:
                self.delete(path)
            except StructbiError:
                _logger.exception("file_discard_failed base=%s path=%s", self.base_dir, path)
        self.saved = []


def is_safe_relative_path(path: str) -> bool:
    if not path or path.startswith(("/", "\\")):
        return False
    parts = path.replace("\\", "/").split("/")
    return all(part not in ("", ".", "..") for part in parts)
