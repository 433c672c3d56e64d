"""
Resource handlers

ResourceService holds the request-independent collaborators for one
resource (store, query executor, attachment coordinator) and implements
every operation the generated routes expose. Writes follow

    validating -> uploading -> persisting -> responding

and roll back the blobs uploaded by this request when persisting fails.
Cleanup of blobs replaced or released by a successful write is returned to
the caller as stale_urls, to run after the response has been sent.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from bson import ObjectId

from attachments import AttachmentCoordinator, CleanupReport, UploadedFile, extract_attachment_urls, validate_files
from errors import AttachmentValidationError, NotFound, RequestValidationError
from query import ListResult, QueryExecutor, parse_list_params
from schemas import ResourceConfig

logger = logging.getLogger(__name__)


@dataclass
class MutationResult:
    document: Dict[str, Any]
    stale_urls: List[str] = field(default_factory=list)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def sort_distinct_values(values: List[Any]) -> List[Any]:
    """Text sorts lexicographically, numbers numerically, anything else keeps store order."""
    if values and all(isinstance(value, str) for value in values):
        return sorted(values)
    if values and all(_is_number(value) for value in values):
        return sorted(values)
    return list(values)


class ResourceService:
    def __init__(self, resource: ResourceConfig, store, coordinator: Optional[AttachmentCoordinator] = None):
        self.resource = resource
        self.store = store
        self.coordinator = coordinator
        self.executor = QueryExecutor(store, resource)

    @property
    def name(self) -> str:
        return self.resource.name

    @property
    def handles_files(self) -> bool:
        return self.resource.has_file_fields and self.coordinator is not None

    # -----------------
    # Reads
    # -----------------

    def list(self, params: Mapping[str, str]) -> ListResult:
        return self.executor.list(parse_list_params(params))

    def get(self, identifier: str) -> Dict[str, Any]:
        document = self.store.find_by_id(identifier)
        if document is None:
            raise NotFound(self.name, identifier)
        return document

    def distinct(self, field_name: str) -> List[Any]:
        if not self.resource.is_filterable(field_name):
            allowed = ", ".join(self.resource.filterable_fields)
            raise RequestValidationError(
                f'Field "{field_name}" is not filterable. Allowed filter fields: {allowed}'
            )
        return sort_distinct_values(self.store.distinct(field_name))

    # -----------------
    # Writes
    # -----------------

    def create(self, body: Optional[Dict[str, Any]], files: Optional[Mapping[str, UploadedFile]] = None) -> MutationResult:
        body, files = self._require_content(body, files)

        if not self.handles_files:
            return MutationResult(self.store.create(body))

        self._validate_files(files, is_create=True)
        document_id = ObjectId()
        uploaded = self.coordinator.upload(files, self.resource.file_fields, self.name, str(document_id))
        body.update(uploaded)

        try:
            document = self.store.create(body, document_id=document_id)
        except Exception:
            self._rollback(uploaded)
            raise
        return MutationResult(document)

    def replace(self, identifier: str, body: Optional[Dict[str, Any]], files: Optional[Mapping[str, UploadedFile]] = None) -> MutationResult:
        body, files = self._require_content(body, files)

        if not self.handles_files:
            document = self.store.replace(identifier, body)
            if document is None:
                raise NotFound(self.name, identifier)
            return MutationResult(document)

        self._validate_files(files, is_create=False)
        previous = extract_attachment_urls(self.store.find_by_id(identifier), self.resource.file_fields)
        uploaded = self.coordinator.upload(files, self.resource.file_fields, self.name, identifier)
        body.update(uploaded)

        document = self._persist(lambda: self.store.replace(identifier, body), uploaded, identifier)
        current = set(extract_attachment_urls(document, self.resource.file_fields).values())
        stale = [url for url in previous.values() if url not in current]
        return MutationResult(document, stale)

    def patch(self, identifier: str, body: Optional[Dict[str, Any]], files: Optional[Mapping[str, UploadedFile]] = None) -> MutationResult:
        body, files = self._require_content(body, files)

        if not self.handles_files or not files:
            document = self.store.update(identifier, body)
            if document is None:
                raise NotFound(self.name, identifier)
            return MutationResult(document)

        self._validate_files(files, is_create=False)
        previous = extract_attachment_urls(self.store.find_by_id(identifier), self.resource.file_fields)
        replaced = [url for field_name, url in previous.items() if field_name in files]
        uploaded = self.coordinator.upload(files, self.resource.file_fields, self.name, identifier)
        body.update(uploaded)

        document = self._persist(lambda: self.store.update(identifier, body), uploaded, identifier)
        return MutationResult(document, replaced)

    def delete(self, identifier: str) -> MutationResult:
        document = self.store.delete(identifier)
        if document is None:
            raise NotFound(self.name, identifier)
        stale = []
        if self.handles_files:
            stale = list(extract_attachment_urls(document, self.resource.file_fields).values())
        return MutationResult(document, stale)

    def cleanup(self, urls: List[str]) -> Optional[CleanupReport]:
        """Advisory delete of blobs no document references anymore."""
        if not urls or self.coordinator is None:
            return None
        report = self.coordinator.rollback(urls)
        if not report.complete:
            logger.warning("%s: %d of %d stale blobs left behind", self.name, len(report.failed), len(report.attempted))
        return report

    # -----------------
    # Helpers
    # -----------------

    def _require_content(self, body, files):
        body = dict(body or {})
        files = dict(files or {})
        if not body and not files:
            raise RequestValidationError("Request body cannot be empty")
        return body, files

    def _validate_files(self, files: Mapping[str, UploadedFile], is_create: bool):
        errors = validate_files(files, self.resource.file_fields, is_create)
        if errors:
            raise AttachmentValidationError(errors)

    def _persist(self, write, uploaded: Dict[str, str], identifier: str) -> Dict[str, Any]:
        try:
            document = write()
        except Exception:
            self._rollback(uploaded)
            raise
        if document is None:
            self._rollback(uploaded)
            raise NotFound(self.name, identifier)
        return document

    def _rollback(self, uploaded: Dict[str, str]):
        if uploaded:
            self.coordinator.rollback(uploaded.values())
