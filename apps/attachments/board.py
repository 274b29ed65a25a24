# attachments/board.py
"""
Attachment board.

Files are staged with their own descriptions, validated before anything is
sent, then committed as independent uploads. Staged images get a preview
handle: a revocable URL over the staged bytes that is released when the file
leaves the queue.
"""
import logging
import os
import secrets
import uuid
from concurrent.futures import ThreadPoolExecutor

from django.conf import settings
from django.core.cache import cache
from django.core.files.storage import FileSystemStorage
from django.urls import reverse

from common.exceptions import PreconditionFailed
from common.hms_client import HMSAPIException

from .serializers import parse_attachment_payload

logger = logging.getLogger(__name__)

ACCEPTED_TYPES = {
    'png': 'image/png',
    'jpg': 'image/jpeg',
    'jpeg': 'image/jpeg',
    'gif': 'image/gif',
    'webp': 'image/webp',
    'pdf': 'application/pdf',
}

IMAGE_TYPES = frozenset({'image/png', 'image/jpeg', 'image/gif', 'image/webp'})

# Browsers sometimes send no specific type; the extension decides then
GENERIC_CONTENT_TYPES = frozenset({'', 'application/octet-stream', 'binary/octet-stream'})


def staging_storage():
    return FileSystemStorage(location=settings.ATTACHMENT_STAGING_ROOT)


def preview_kind(file_type, file_name=''):
    """image renders inline, pdf in an embedded viewer, anything else is download-only"""
    file_type = (file_type or '').lower()
    extension = os.path.splitext(file_name or '')[1].lower().lstrip('.')
    if file_type.startswith('image/') or ACCEPTED_TYPES.get(extension) in IMAGE_TYPES:
        return 'image'
    if file_type == 'application/pdf' or extension == 'pdf':
        return 'pdf'
    return 'other'


def format_size(size):
    if size < 1024:
        return f'{size} B'
    if size < 1024 * 1024:
        return f'{size / 1024:.1f} KB'
    return f'{size / (1024 * 1024):.1f} MB'


class PreviewHandle:
    """
    Scoped access to a staged file's bytes through a token URL.

    ``release()`` is idempotent; the handle also works as a context manager.
    """

    CACHE_PREFIX = 'attachment-preview'

    def __init__(self, token):
        self.token = token
        self.released = False

    @classmethod
    def cache_key(cls, token):
        return f'{cls.CACHE_PREFIX}:{token}'

    @classmethod
    def acquire(cls, storage_name, content_type):
        token = secrets.token_urlsafe(24)
        cache.set(
            cls.cache_key(token),
            {'storage_name': storage_name, 'content_type': content_type},
            timeout=settings.PREVIEW_HANDLE_TTL
        )
        return cls(token)

    @classmethod
    def resolve(cls, token):
        return cache.get(cls.cache_key(token))

    @property
    def url(self):
        return reverse('attachments:preview', kwargs={'token': self.token})

    def release(self):
        if not self.released:
            cache.delete(self.cache_key(self.token))
            self.released = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


class StagedFile:

    def __init__(self, id, file_name, content_type, size, storage_name, description='', preview_token=None):
        self.id = id
        self.file_name = file_name
        self.content_type = content_type
        self.size = size
        self.storage_name = storage_name
        self.description = description or ''
        self.preview = PreviewHandle(preview_token) if preview_token else None

    @classmethod
    def from_state(cls, data):
        return cls(**data)

    def as_state(self):
        return {
            'id': self.id,
            'file_name': self.file_name,
            'content_type': self.content_type,
            'size': self.size,
            'storage_name': self.storage_name,
            'description': self.description,
            'preview_token': self.preview.token if self.preview else None,
        }

    def as_dict(self):
        return {
            'id': self.id,
            'file_name': self.file_name,
            'file_type': self.content_type,
            'file_size': self.size,
            'file_size_display': format_size(self.size),
            'description': self.description,
            'preview_kind': preview_kind(self.content_type, self.file_name),
            'preview_url': self.preview.url if self.preview else None,
        }


class FileAttachment:
    """Persisted attachment of an encounter"""

    def __init__(self, data):
        self.id = data['id']
        self.encounter_type = data.get('encounter_type')
        self.object_id = data.get('object_id')
        self.file_url = data.get('file_url') or data.get('file') or ''
        self.file_name = data.get('file_name') or os.path.basename(self.file_url)
        self.file_type = data.get('file_type') or ''
        self.file_size = data.get('file_size') or 0
        self.description = data.get('description') or ''
        self.uploaded_by = data.get('uploaded_by')
        self.uploaded_by_name = data.get('uploaded_by_name') or ''
        self.created_at = data.get('created_at')

    @classmethod
    def from_payload(cls, data):
        return cls(parse_attachment_payload(data))

    @property
    def preview_kind(self):
        return preview_kind(self.file_type, self.file_name)

    def as_dict(self):
        return {
            'id': self.id,
            'encounter_type': self.encounter_type,
            'object_id': self.object_id,
            'file_url': self.file_url,
            'file_name': self.file_name,
            'file_type': self.file_type,
            'file_size': self.file_size,
            'file_size_display': format_size(self.file_size),
            'description': self.description,
            'uploaded_by': self.uploaded_by,
            'uploaded_by_name': self.uploaded_by_name,
            'created_at': self.created_at,
            'preview_kind': self.preview_kind,
        }


class UploadReport:
    """Outcome of a commit: every file settles independently"""

    def __init__(self):
        self.succeeded = []
        self.failed = []

    @property
    def messages(self):
        messages = []
        if self.succeeded:
            messages.append(f'{len(self.succeeded)} file(s) uploaded successfully')
        if self.failed:
            messages.append(f'{len(self.failed)} file(s) failed to upload')
        return messages

    def as_dict(self):
        return {
            'success_count': len(self.succeeded),
            'failure_count': len(self.failed),
            'uploaded': [attachment.as_dict() for attachment in self.succeeded],
            'failed': self.failed,
            'messages': self.messages,
        }


class AttachmentBoard:

    def __init__(self, client, session, encounter, storage=None):
        self.client = client
        self.session = session
        self.encounter = encounter
        self.storage = storage or staging_storage()
        self.staged = [StagedFile.from_state(data) for data in session.staged_files]

    def _persist(self):
        self.session.set_staged_files([staged.as_state() for staged in self.staged])

    # ==================== PERSISTED ATTACHMENTS ====================

    def list(self):
        if self.encounter is None:
            return []
        records = self.client.list_attachments(self.encounter.query_params)
        return [FileAttachment.from_payload(data) for data in records]

    def delete(self, attachment_id, confirmed=False):
        if not confirmed:
            raise PreconditionFailed('Deleting an attachment requires confirmation.')
        self.client.delete_attachment(attachment_id)
        logger.info(f"Deleted attachment {attachment_id} from {self.encounter}")

    # ==================== STAGING ====================

    def validate(self, upload):
        """Rejection message for an upload, or None when it can be staged"""
        extension = os.path.splitext(upload.name or '')[1].lower().lstrip('.')
        expected_type = ACCEPTED_TYPES.get(extension)
        content_type = (getattr(upload, 'content_type', '') or '').lower()

        if expected_type is None:
            return 'Only images (PNG, JPG, GIF, WEBP) and PDF files are allowed.'
        if content_type not in GENERIC_CONTENT_TYPES and content_type not in ACCEPTED_TYPES.values():
            return 'Only images (PNG, JPG, GIF, WEBP) and PDF files are allowed.'
        if upload.size > settings.ATTACHMENT_MAX_BYTES:
            return f'File exceeds the {format_size(settings.ATTACHMENT_MAX_BYTES)} limit.'
        return None

    def stage(self, uploads, descriptions=()):
        """
        Add files to the queue.

        Returns:
            (accepted StagedFiles, rejected [{file_name, error}])
        """
        accepted, rejected = [], []
        descriptions = list(descriptions)
        for index, upload in enumerate(uploads):
            error = self.validate(upload)
            if error:
                logger.info(f"Rejected {upload.name} at staging: {error}")
                rejected.append({'file_name': upload.name, 'error': error})
                continue

            extension = os.path.splitext(upload.name)[1].lower()
            content_type = ACCEPTED_TYPES[extension.lstrip('.')]
            staged_id = uuid.uuid4().hex
            storage_name = self.storage.save(
                f'{self.session.visit_id}/{staged_id}{extension}', upload
            )
            preview = PreviewHandle.acquire(storage_name, content_type) if content_type in IMAGE_TYPES else None
            staged = StagedFile(
                id=staged_id,
                file_name=upload.name,
                content_type=content_type,
                size=upload.size,
                storage_name=storage_name,
                description=descriptions[index] if index < len(descriptions) else '',
                preview_token=preview.token if preview else None,
            )
            self.staged.append(staged)
            accepted.append(staged)

        self._persist()
        return accepted, rejected

    def _find(self, staged_id):
        for staged in self.staged:
            if staged.id == staged_id:
                return staged
        raise PreconditionFailed('File is not in the upload queue.')

    def update_description(self, staged_id, description):
        staged = self._find(staged_id)
        staged.description = description
        self._persist()
        return staged

    def _discard(self, staged):
        if staged.preview:
            staged.preview.release()
        if self.storage.exists(staged.storage_name):
            self.storage.delete(staged.storage_name)

    def unstage(self, staged_id):
        staged = self._find(staged_id)
        self._discard(staged)
        self.staged.remove(staged)
        self._persist()

    def clear(self):
        for staged in self.staged:
            self._discard(staged)
        self.staged = []
        self._persist()

    # ==================== COMMIT ====================

    def _upload(self, staged):
        with self.storage.open(staged.storage_name, 'rb') as handle:
            content = handle.read()
        data = self.client.upload_attachment(
            {
                'encounter_type': self.encounter.kind.value,
                'object_id': self.encounter.id,
                'description': staged.description,
            },
            staged.file_name,
            content,
            staged.content_type,
        )
        return FileAttachment.from_payload(data)

    def commit(self):
        """
        Upload every staged file independently and report per-file outcomes.

        The queue is drained and every preview handle released once all
        uploads have settled, whatever their outcome.
        """
        if self.encounter is None:
            raise PreconditionFailed('No valid visit or admission context.')
        if not self.staged:
            raise PreconditionFailed('No files selected.')

        report = UploadReport()
        try:
            workers = max(1, min(settings.ATTACHMENT_UPLOAD_WORKERS, len(self.staged)))
            with ThreadPoolExecutor(max_workers=workers) as pool:
                futures = [(staged, pool.submit(self._upload, staged)) for staged in self.staged]
                for staged, future in futures:
                    try:
                        report.succeeded.append(future.result())
                    except (HMSAPIException, OSError) as e:
                        message = getattr(e, 'message', None) or str(e)
                        logger.error(f"Upload of {staged.file_name} failed: {message}")
                        report.failed.append({'file_name': staged.file_name, 'error': message})
        finally:
            self.clear()

        logger.info(
            f"Committed uploads to {self.encounter}: {len(report.succeeded)} ok, {len(report.failed)} failed"
        )
        return report
