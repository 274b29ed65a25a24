# apps/attachments/tests.py

import shutil
import tempfile

from django.core.cache import cache
from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import SimpleTestCase, override_settings
from unittest.mock import MagicMock

from common.exceptions import PreconditionFailed
from common.hms_client import HMSAPIException
from apps.consultation.session import WorkspaceSession
from apps.encounters.resolver import Encounter

from .board import AttachmentBoard, PreviewHandle, format_size, preview_kind

PNG_BYTES = b'\x89PNG\r\n\x1a\n' + b'0' * 64


def png(name='scan.png', size=None):
    content = PNG_BYTES if size is None else b'0' * size
    return SimpleUploadedFile(name, content, content_type='image/png')


def attachment_payload(attachment_id, file_name):
    return {
        'id': attachment_id,
        'encounter_type': 'visit',
        'object_id': 7,
        'file': f'/media/visit_attachments/{file_name}',
        'file_name': file_name,
        'file_type': 'image/png',
        'file_size': 72,
        'description': '',
    }


class StagingRootMixin:

    def setUp(self):
        super().setUp()
        cache.clear()
        self.staging_root = tempfile.mkdtemp()
        override = override_settings(ATTACHMENT_STAGING_ROOT=self.staging_root)
        override.enable()
        self.addCleanup(override.disable)
        self.addCleanup(shutil.rmtree, self.staging_root, True)


class AttachmentBoardTestCase(StagingRootMixin, SimpleTestCase):
    """Staging, validation and independent uploads"""

    def setUp(self):
        super().setUp()
        self.client = MagicMock()
        self.session = WorkspaceSession({}, 7)
        self.board = AttachmentBoard(self.client, self.session, Encounter('visit', 7))

    def test_oversized_image_rejected_without_upload(self):
        """Test an 11 MB image is refused at staging and nothing is uploaded"""
        accepted, rejected = self.board.stage([png('huge.png', size=11 * 1024 * 1024)])

        self.assertEqual(accepted, [])
        self.assertEqual(rejected[0]['file_name'], 'huge.png')
        self.assertIn('10.0 MB', rejected[0]['error'])
        with self.assertRaises(PreconditionFailed):
            self.board.commit()
        self.client.upload_attachment.assert_not_called()

    def test_unsupported_type_rejected(self):
        upload = SimpleUploadedFile('notes.docx', b'doc', content_type='application/msword')
        accepted, rejected = self.board.stage([upload])
        self.assertEqual(accepted, [])
        self.assertEqual(len(rejected), 1)

    def test_generic_content_type_accepted_by_extension(self):
        upload = SimpleUploadedFile('report.pdf', b'%PDF-1.4', content_type='application/octet-stream')
        accepted, rejected = self.board.stage([upload])
        self.assertEqual(rejected, [])
        self.assertEqual(accepted[0].content_type, 'application/pdf')
        self.assertIsNone(accepted[0].preview)

    def test_each_file_keeps_its_description(self):
        self.board.stage([png('a.png'), png('b.png')], ['Front view', 'Side view'])
        board = AttachmentBoard(self.client, self.session, Encounter('visit', 7))
        self.assertEqual([staged.description for staged in board.staged], ['Front view', 'Side view'])

    def test_image_gets_preview_handle(self):
        accepted, _ = self.board.stage([png()])
        token = accepted[0].preview.token
        self.assertIsNotNone(PreviewHandle.resolve(token))
        self.assertIn(token, accepted[0].as_dict()['preview_url'])

    def test_unstage_releases_preview(self):
        accepted, _ = self.board.stage([png()])
        staged = accepted[0]

        self.board.unstage(staged.id)

        self.assertIsNone(PreviewHandle.resolve(staged.preview.token))
        self.assertFalse(self.board.storage.exists(staged.storage_name))
        self.assertEqual(self.session.staged_files, [])

    def test_update_description_of_unknown_file(self):
        with self.assertRaises(PreconditionFailed):
            self.board.update_description('missing', 'x')

    def test_commit_reports_partial_failure(self):
        """Test every file settles on its own and the counts are reported"""
        def upload(fields, file_name, content, content_type):
            if file_name == 'bad.png':
                raise HMSAPIException('Storage quota exceeded', status_code=400)
            return attachment_payload(50, file_name)

        self.client.upload_attachment.side_effect = upload
        accepted, _ = self.board.stage([png('good.png'), png('bad.png')], ['Wound', 'Rash'])
        tokens = [staged.preview.token for staged in accepted]

        report = self.board.commit()

        self.assertEqual(len(report.succeeded), 1)
        self.assertEqual(report.failed, [{'file_name': 'bad.png', 'error': 'Storage quota exceeded'}])
        self.assertEqual(
            report.messages,
            ['1 file(s) uploaded successfully', '1 file(s) failed to upload']
        )
        self.assertEqual(self.client.upload_attachment.call_count, 2)
        fields = [call[0][0] for call in self.client.upload_attachment.call_args_list]
        self.assertEqual(
            sorted(item['description'] for item in fields), ['Rash', 'Wound']
        )
        self.assertTrue(all(item['encounter_type'] == 'visit' and item['object_id'] == 7 for item in fields))

        # Queue drained and previews released whatever the outcome
        self.assertEqual(self.board.staged, [])
        self.assertEqual(self.session.staged_files, [])
        for token in tokens:
            self.assertIsNone(PreviewHandle.resolve(token))

    def test_delete_requires_confirmation(self):
        with self.assertRaises(PreconditionFailed):
            self.board.delete(50)
        self.client.delete_attachment.assert_not_called()

        self.board.delete(50, confirmed=True)
        self.client.delete_attachment.assert_called_once_with(50)

    def test_list_uses_encounter(self):
        self.client.list_attachments.return_value = [attachment_payload(50, 'xray.png')]
        attachments = self.board.list()
        self.client.list_attachments.assert_called_once_with({'encounter_type': 'visit', 'object_id': 7})
        self.assertEqual(attachments[0].preview_kind, 'image')


class PreviewHandleTestCase(SimpleTestCase):

    def setUp(self):
        cache.clear()

    def test_release_is_idempotent(self):
        handle = PreviewHandle.acquire('7/abc.png', 'image/png')
        handle.release()
        handle.release()
        self.assertIsNone(PreviewHandle.resolve(handle.token))

    def test_context_manager_releases(self):
        with PreviewHandle.acquire('7/abc.png', 'image/png') as handle:
            self.assertIsNotNone(PreviewHandle.resolve(handle.token))
        self.assertIsNone(PreviewHandle.resolve(handle.token))

    def test_preview_kind(self):
        self.assertEqual(preview_kind('image/jpeg'), 'image')
        self.assertEqual(preview_kind('', 'report.PDF'), 'pdf')
        self.assertEqual(preview_kind('text/plain', 'notes.txt'), 'other')

    def test_format_size(self):
        self.assertEqual(format_size(512), '512 B')
        self.assertEqual(format_size(2048), '2.0 KB')
        self.assertEqual(format_size(10 * 1024 * 1024), '10.0 MB')


class PreviewViewTestCase(StagingRootMixin, SimpleTestCase):
    """Staged image bytes are served only while the handle is held"""

    def test_preview_served_then_gone(self):
        board = AttachmentBoard(MagicMock(), WorkspaceSession({}, 7), Encounter('visit', 7))
        accepted, _ = board.stage([png()])
        url = accepted[0].as_dict()['preview_url']

        response = self.client.get(url)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['Content-Type'], 'image/png')
        self.assertEqual(b''.join(response.streaming_content), PNG_BYTES)
        response.close()

        board.clear()
        self.assertEqual(self.client.get(url).status_code, 404)

    def test_unknown_token(self):
        self.assertEqual(self.client.get('/api/previews/not-a-token/').status_code, 404)
