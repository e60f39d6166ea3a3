"""
Unit tests for Google Drive export (Drive API mocked).
"""
from unittest.mock import MagicMock

import pytest
import requests
from google.auth.exceptions import RefreshError

import google_drive
import settings
from exporters import TEXT_FILE_NAME
from google_drive import (
    ROOT_FOLDER_NAME, GoogleDriveError, get_or_create_folder, save_to_drive,
    save_video_from_url_to_drive,
)
from models import GeneratedImage


def fake_drive(existing=None):
    """Drive service whose create() echoes back the file name as its id."""
    service = MagicMock()
    files = service.files.return_value
    files.list.return_value.execute.return_value = {'files': existing or []}
    files.create.side_effect = lambda **kw: MagicMock(
        execute=MagicMock(return_value={'id': f"id-{kw['body']['name']}"})
    )
    return service


def created_names(service):
    return [c.kwargs['body']['name'] for c in service.files.return_value.create.call_args_list]


@pytest.fixture
def drive(monkeypatch):
    service = fake_drive()
    monkeypatch.setattr(google_drive, '_get_service', lambda: service)
    return service


class TestFolders:
    """Tests for get_or_create_folder()."""

    def test_existing_folder_reused(self):
        service = fake_drive(existing=[{'id': 'folder-1', 'name': 'Spring'}])
        assert get_or_create_folder('Spring', 'root-id', service=service) == 'folder-1'
        query = service.files.return_value.list.call_args.kwargs['q']
        assert "name='Spring'" in query
        assert "'root-id' in parents" in query
        service.files.return_value.create.assert_not_called()

    def test_missing_folder_created(self):
        service = fake_drive()
        assert get_or_create_folder("Bob's Drop", 'root-id', service=service) == "id-Bob's Drop"
        body = service.files.return_value.create.call_args.kwargs['body']
        assert body['parents'] == ['root-id']
        assert "name='Bob\\'s Drop'" in service.files.return_value.list.call_args.kwargs['q']

    def test_api_error_wrapped(self):
        service = MagicMock()
        service.files.return_value.list.return_value.execute.side_effect = RuntimeError('quota')
        with pytest.raises(GoogleDriveError, match='quota'):
            get_or_create_folder('Spring', service=service)


class TestSaveToDrive:
    """Tests for save_to_drive()."""

    def test_uploads_images_and_text(self, drive, generated_data):
        messages = []
        result = save_to_drive(generated_data, 'Spring', status_callback=messages.append)

        assert created_names(drive) == [
            ROOT_FOLDER_NAME,
            'Spring',
            'serum-bottle-on-marble-morning-light.png',
            'macro-of-the-dropper-tip.png',
            TEXT_FILE_NAME,
        ]
        assert result == {
            'folder_id': 'id-Spring',
            'folder_link': 'https://drive.google.com/drive/folders/id-Spring',
            'uploaded_images': 2,
        }
        assert messages[0] == 'Authenticating with Google Drive...'
        assert 'Uploading image 2/2: Close-up...' in messages
        assert messages[-1] == 'Successfully saved to Google Drive!'

    def test_extended_frames_uploaded(self, drive, generated_data, sample_png):
        """Extended frames follow their perspective's main image."""
        perspective = generated_data.perspectives[0]
        perspective.prompt = ''
        perspective.extended_frames = [
            GeneratedImage(data=sample_png, mime_type='image/jpeg', label='Frame 2'),
        ]
        result = save_to_drive(generated_data, 'Spring')

        names = created_names(drive)
        assert names[2:4] == ['Wide-Shot.png', 'Wide-Shot-Frame-2.jpg']
        assert result['uploaded_images'] == 3

    def test_upload_failure_raises(self, drive, generated_data):
        files = drive.files.return_value
        files.create.side_effect = [
            MagicMock(execute=MagicMock(return_value={'id': 'root'})),
            MagicMock(execute=MagicMock(return_value={'id': 'campaign'})),
            MagicMock(execute=MagicMock(side_effect=RuntimeError('storage full'))),
        ]
        with pytest.raises(GoogleDriveError, match='storage full'):
            save_to_drive(generated_data, 'Spring')


class TestSaveVideo:
    """Tests for save_video_from_url_to_drive()."""

    def test_downloads_and_uploads(self, drive, monkeypatch):
        response = MagicMock(ok=True, status_code=200, content=b'mp4-bytes',
                             headers={'Content-Type': 'video/mp4; charset=binary'})
        get = MagicMock(return_value=response)
        monkeypatch.setattr(google_drive.requests, 'get', get)

        result = save_video_from_url_to_drive('https://cdn.fal/v.mp4', 'clip.mp4', 'Spring')

        assert result['file_id'] == 'id-clip.mp4'
        assert result['folder_link'].endswith('/id-Spring')
        assert get.call_args.kwargs['timeout'] == google_drive.DOWNLOAD_TIMEOUT
        upload = drive.files.return_value.create.call_args
        assert upload.kwargs['media_body'].mimetype() == 'video/mp4'

    def test_download_failure(self, drive, monkeypatch):
        response = MagicMock(ok=False, status_code=403, text='expired link')
        monkeypatch.setattr(google_drive.requests, 'get', MagicMock(return_value=response))
        with pytest.raises(GoogleDriveError, match='Status: 403'):
            save_video_from_url_to_drive('https://cdn.fal/v.mp4', 'clip.mp4', 'Spring')

    def test_network_error(self, drive, monkeypatch):
        monkeypatch.setattr(google_drive.requests, 'get',
                            MagicMock(side_effect=requests.ConnectionError('reset')))
        with pytest.raises(GoogleDriveError, match='reset'):
            save_video_from_url_to_drive('https://cdn.fal/v.mp4', 'clip.mp4', 'Spring')


@pytest.fixture
def token_path(tmp_path, monkeypatch):
    path = tmp_path / 'credentials' / 'oauth_token.pickle'
    monkeypatch.setattr(google_drive, 'TOKEN_PATH', str(path))
    return path


@pytest.fixture
def oauth_client(monkeypatch):
    monkeypatch.setenv('GOOGLE_OAUTH_CLIENT_ID', 'client-id')
    monkeypatch.setenv('GOOGLE_OAUTH_CLIENT_SECRET', 'client-secret')


class TestCredentials:
    """Tests for token loading and the one-off authorization flow."""

    def test_no_token_never_opens_browser(self, token_path, oauth_client, monkeypatch):
        """Without a saved token the server fails fast instead of waiting on a consent page."""
        flow = MagicMock()
        monkeypatch.setattr(google_drive, 'InstalledAppFlow', flow)
        with pytest.raises(GoogleDriveError, match='setup_oauth.py'):
            save_to_drive(MagicMock(), 'Spring')
        flow.from_client_config.assert_not_called()

    def test_refresh_failure_wrapped(self, token_path, monkeypatch):
        """A revoked refresh token surfaces as a GoogleDriveError."""
        creds = MagicMock(valid=False, expired=True, refresh_token='refresh')
        creds.refresh.side_effect = RefreshError('invalid_grant: Token has been expired or revoked.')
        monkeypatch.setattr(google_drive, '_load_token', lambda: creds)
        with pytest.raises(GoogleDriveError, match='invalid_grant'):
            save_to_drive(MagicMock(), 'Spring')

    def test_corrupt_token_wrapped(self, token_path):
        token_path.parent.mkdir(parents=True)
        token_path.write_bytes(b'not a pickle')
        with pytest.raises(GoogleDriveError, match='authentication failed'):
            google_drive._get_service()

    def test_expired_token_refreshed_and_saved(self, token_path, monkeypatch):
        creds = MagicMock(valid=False, expired=True, refresh_token='refresh')
        saved = MagicMock()
        build = MagicMock(return_value='service')
        monkeypatch.setattr(google_drive, '_load_token', lambda: creds)
        monkeypatch.setattr(google_drive, '_save_token', saved)
        monkeypatch.setattr(google_drive, 'build', build)

        assert google_drive._get_service() == 'service'
        creds.refresh.assert_called_once()
        saved.assert_called_once_with(creds)
        assert build.call_args.kwargs['credentials'] is creds

    def test_authorize_interactively_saves_token(self, token_path, oauth_client, monkeypatch):
        flow = MagicMock()
        flow.from_client_config.return_value.run_local_server.return_value = {'token': 'abc'}
        monkeypatch.setattr(google_drive, 'InstalledAppFlow', flow)

        assert google_drive.authorize_interactively(port=9090) == {'token': 'abc'}
        config, scopes = flow.from_client_config.call_args.args
        assert config['installed']['client_id'] == 'client-id'
        assert scopes == google_drive.SCOPES
        flow.from_client_config.return_value.run_local_server.assert_called_once_with(port=9090)
        assert token_path.exists()

    def test_authorize_requires_client(self, token_path, monkeypatch):
        monkeypatch.delenv('GOOGLE_OAUTH_CLIENT_ID', raising=False)
        with pytest.raises(GoogleDriveError, match='GOOGLE_OAUTH_CLIENT_ID'):
            google_drive.authorize_interactively()

    def test_configured_only_with_token(self, token_path, oauth_client):
        """Client credentials alone are not enough to export."""
        assert settings.is_google_drive_configured() is False
        token_path.parent.mkdir(parents=True)
        token_path.write_bytes(b'token')
        assert settings.is_google_drive_configured() is True
