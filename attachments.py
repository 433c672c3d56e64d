"""
Attachment coordination

Keeps the blob store consistent with the document store around a write:
validate the uploaded parts, upload them under the document's id, and roll
them back when the write fails. Cleanup is advisory. A failed delete is
logged and reported in the CleanupReport, never raised.
"""

import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from schemas import FileFieldSpec

logger = logging.getLogger(__name__)

BYTES_PER_MB = 1024 * 1024


@dataclass(frozen=True)
class UploadedFile:
    """One binary part of a multipart request."""
    filename: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        return os.path.splitext(self.filename or "")[1].lower()


@dataclass
class CleanupReport:
    """Outcome of an advisory delete.

    attempted lists every URL a delete was issued for; confirmed only those the
    blob store acknowledged. Callers must not treat a shortfall as a failure of
    the request that triggered the cleanup.
    """
    attempted: List[str] = field(default_factory=list)
    confirmed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return len(self.confirmed) == len(self.attempted)


def is_file_accepted(upload: UploadedFile, accept: str) -> bool:
    """Match a file against an HTML-style accept list (".pdf", "image/*", "image/png")."""
    rules = [rule.strip().lower() for rule in accept.split(",") if rule.strip()]
    mime = (upload.content_type or "").lower()
    for rule in rules:
        if rule.startswith("."):
            if upload.extension == rule:
                return True
        elif rule.endswith("/*"):
            if mime.startswith(rule[:-1]):
                return True
        elif mime == rule:
            return True
    return False


def validate_files(
    files: Mapping[str, UploadedFile],
    file_fields: Sequence[FileFieldSpec],
    is_create: bool,
) -> List[str]:
    errors = []
    for spec in file_fields:
        upload = files.get(spec.field_name)

        if upload is None:
            if spec.required and is_create:
                errors.append(f'File field "{spec.field_name}" is required')
            continue

        if spec.max_size_mb and upload.size > spec.max_size_mb * BYTES_PER_MB:
            actual = upload.size / BYTES_PER_MB
            errors.append(
                f'File "{spec.field_name}" exceeds max size of {spec.max_size_mb:g}MB (got {actual:.2f}MB)'
            )

        if spec.accept and not is_file_accepted(upload, spec.accept):
            errors.append(
                f'File "{spec.field_name}" type "{upload.content_type}" not allowed. Accepted: {spec.accept}'
            )
    return errors


def extract_attachment_urls(document: Optional[Mapping[str, Any]], file_fields: Iterable[FileFieldSpec]) -> Dict[str, str]:
    """Map file field -> stored URL for the attachments a document references."""
    if not document:
        return {}
    urls = {}
    for spec in file_fields:
        value = document.get(spec.field_name)
        if isinstance(value, str) and value.startswith("http"):
            urls[spec.field_name] = value
    return urls


class AttachmentCoordinator:
    def __init__(self, blob_store, clock=time.time):
        self.blob_store = blob_store
        self._clock = clock

    def blob_path(self, resource_name: str, document_id: str, field_name: str, upload: UploadedFile) -> str:
        stamp = int(self._clock() * 1000)
        return f"{resource_name}/{document_id}/{field_name}-{stamp}{upload.extension}"

    def upload(
        self,
        files: Mapping[str, UploadedFile],
        file_fields: Sequence[FileFieldSpec],
        resource_name: str,
        document_id: str,
    ) -> Dict[str, str]:
        """Upload every configured file that was sent. Fields without an upload are left out.

        When one upload fails the ones already stored for this request are
        rolled back before the error propagates.
        """
        urls = {}
        for spec in file_fields:
            upload = files.get(spec.field_name)
            if upload is None:
                continue
            path = self.blob_path(resource_name, document_id, spec.field_name, upload)
            try:
                urls[spec.field_name] = self.blob_store.put(
                    path, upload.content, upload.content_type or "application/octet-stream",
                )
            except Exception:
                self.rollback(urls.values())
                raise
            logger.debug("Uploaded %s for %s/%s", path, resource_name, document_id)
        return urls

    def rollback(self, urls: Iterable[str]) -> CleanupReport:
        report = CleanupReport()
        for url in urls:
            report.attempted.append(url)
            try:
                self.blob_store.delete(url)
            except Exception as e:
                logger.warning("Could not delete blob %s: %s", url, e)
                report.failed[url] = str(e)
            else:
                report.confirmed.append(url)
        return report
