"""
Google Drive Integration Module
Saves campaign images, content sheets and videos into Drive folders

Uses OAuth authentication (user grants access once, token is saved).
Folder layout: Content Catalyst Engine Exports / <campaign>
"""
import io
import os
import pickle
import time
from typing import Callable, Optional

import requests
from dotenv import load_dotenv
from google.auth.transport.requests import Request
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build
from googleapiclient.http import MediaIoBaseUpload

load_dotenv()

from exporters import TEXT_FILE_NAME, build_text_content, drive_file_base
from logging_config import get_logger, get_request_logger
from models import GeneratedData

logger = get_logger('drive')

ROOT_FOLDER_NAME = 'Content Catalyst Engine Exports'
FOLDER_MIME_TYPE = 'application/vnd.google-apps.folder'

# Token file path (stores OAuth token for reuse)
TOKEN_PATH = os.getenv(
    'DRIVE_TOKEN_PATH',
    os.path.join(os.path.dirname(__file__), '..', 'credentials', 'oauth_token.pickle')
)

# Scopes required for Drive API
SCOPES = ['https://www.googleapis.com/auth/drive.file']

DOWNLOAD_TIMEOUT = 120

# Status callback: (message) -> None
StatusCallback = Callable[[str], None]


class GoogleDriveError(Exception):
    """Custom exception for Google Drive errors"""
    pass


def _load_token():
    if not os.path.exists(TOKEN_PATH):
        return None
    logger.debug("Loading OAuth token from file")
    with open(TOKEN_PATH, 'rb') as token:
        return pickle.load(token)


def _save_token(creds):
    os.makedirs(os.path.dirname(TOKEN_PATH), exist_ok=True)
    with open(TOKEN_PATH, 'wb') as token:
        pickle.dump(creds, token)
    logger.debug("OAuth token saved")


def get_oauth_client_config() -> dict:
    """Build the installed-app client config from GOOGLE_OAUTH_CLIENT_ID / _SECRET."""
    client_id = os.getenv('GOOGLE_OAUTH_CLIENT_ID')
    client_secret = os.getenv('GOOGLE_OAUTH_CLIENT_SECRET')
    if not client_id or not client_secret:
        logger.error("Missing OAuth credentials in .env")
        raise GoogleDriveError(
            'GOOGLE_OAUTH_CLIENT_ID and GOOGLE_OAUTH_CLIENT_SECRET must be set in .env'
        )
    return {
        "installed": {
            "client_id": client_id,
            "client_secret": client_secret,
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": "https://oauth2.googleapis.com/token",
            "redirect_uris": ["http://localhost"]
        }
    }


def authorize_interactively(port: int = 8080):
    """
    Run the browser consent flow and store the token at TOKEN_PATH.

    Only called from setup_oauth.py; the server never opens a browser.
    """
    flow = InstalledAppFlow.from_client_config(get_oauth_client_config(), SCOPES)
    creds = flow.run_local_server(port=port)
    _save_token(creds)
    logger.info("OAuth authorization complete")
    return creds


def _get_credentials():
    """Load the saved OAuth token, refreshing it when expired."""
    creds = _load_token()

    if creds and creds.valid:
        return creds

    if not (creds and creds.expired and creds.refresh_token):
        raise GoogleDriveError('No usable Google Drive token. Run setup_oauth.py first.')

    logger.info("OAuth token expired, refreshing...")
    creds.refresh(Request())
    _save_token(creds)
    return creds


def _get_service():
    """Initialize and return Google Drive service using OAuth."""
    try:
        credentials = _get_credentials()
        return build('drive', 'v3', credentials=credentials)
    except GoogleDriveError:
        raise
    except Exception as e:
        logger.error(f"Google Drive authentication failed: {e}")
        raise GoogleDriveError(f"Google Drive authentication failed: {e}")


def _escape_query(value: str) -> str:
    return value.replace('\\', '\\\\').replace("'", "\\'")


def get_or_create_folder(folder_name: str, parent_id: Optional[str] = None, service=None) -> str:
    """
    Find a folder by name (under parent_id when given), creating it if missing.

    Returns:
        Folder ID
    """
    service = service or _get_service()
    query = f"mimeType='{FOLDER_MIME_TYPE}' and name='{_escape_query(folder_name)}' and trashed=false"
    if parent_id:
        query += f" and '{parent_id}' in parents"

    try:
        existing = service.files().list(q=query, fields='files(id, name)').execute()
        files = existing.get('files') or []
        if files:
            return files[0]['id']

        metadata = {'name': folder_name, 'mimeType': FOLDER_MIME_TYPE}
        if parent_id:
            metadata['parents'] = [parent_id]
        folder = service.files().create(body=metadata, fields='id').execute()
        logger.debug(f"Created folder '{folder_name}': {folder.get('id')}")
        return folder.get('id')

    except Exception as e:
        raise GoogleDriveError(
            f"Failed to create or find folder '{folder_name}' in Google Drive. Error: {e}"
        )


def upload_bytes(data: bytes, mime_type: str, filename: str, folder_id: str, service=None) -> str:
    """
    Upload in-memory content to a Drive folder

    Returns:
        File ID
    """
    service = service or _get_service()
    metadata = {'name': filename, 'parents': [folder_id]}
    try:
        media = MediaIoBaseUpload(io.BytesIO(data), mimetype=mime_type, resumable=True)
        file = service.files().create(body=metadata, media_body=media, fields='id').execute()
        return file.get('id')
    except Exception as e:
        raise GoogleDriveError(f'Failed to upload {filename} to Google Drive. Error: {e}')


def get_folder_link(folder_id: str) -> str:
    return f'https://drive.google.com/drive/folders/{folder_id}'


def _campaign_folder(service, campaign_folder_name: str) -> str:
    root_id = get_or_create_folder(ROOT_FOLDER_NAME, service=service)
    return get_or_create_folder(campaign_folder_name, root_id, service=service)


def save_to_drive(
    data: GeneratedData,
    campaign_folder_name: str,
    status_callback: Optional[StatusCallback] = None,
    request_id: Optional[str] = None
) -> dict:
    """
    Upload every image (main + extended frames) and the content sheet.

    Returns:
        dict with folder_id, folder_link and uploaded file count
    """
    log = get_request_logger('drive', request_id) if request_id else logger
    notify = status_callback or (lambda message: None)
    start_time = time.time()

    notify('Authenticating with Google Drive...')
    service = _get_service()

    notify('Creating folder in Google Drive...')
    folder_id = _campaign_folder(service, campaign_folder_name)

    uploads = []
    for perspective in data.perspectives:
        uploads.append((perspective.main_image, perspective.prompt, perspective.label))
        for frame in perspective.extended_frames:
            uploads.append((frame, perspective.prompt, f'{perspective.label}-{frame.label}'))

    for i, (image, prompt, label) in enumerate(uploads):
        notify(f'Uploading image {i + 1}/{len(uploads)}: {label}...')
        filename = f'{drive_file_base(prompt, label)}.{image.ref.extension}'
        upload_bytes(image.data, image.mime_type, filename, folder_id, service=service)
        log.debug(f"Uploaded {filename} ({len(image.data) / 1024:.1f}KB)")

    notify('Uploading text content...')
    text = build_text_content(data, campaign_folder_name)
    upload_bytes(text.encode('utf-8'), 'text/plain', TEXT_FILE_NAME, folder_id, service=service)

    elapsed = time.time() - start_time
    log.info(f"Drive export complete in {elapsed:.1f}s: {len(uploads)} images to '{campaign_folder_name}'")
    notify('Successfully saved to Google Drive!')

    return {
        'folder_id': folder_id,
        'folder_link': get_folder_link(folder_id),
        'uploaded_images': len(uploads),
    }


def save_video_from_url_to_drive(
    video_url: str,
    filename: str,
    campaign_folder_name: str,
    status_callback: Optional[StatusCallback] = None
) -> dict:
    """Download a rendered video and store it in the campaign folder."""
    notify = status_callback or (lambda message: None)

    notify('Authenticating with Google Drive...')
    service = _get_service()

    notify('Locating campaign folder in Google Drive...')
    folder_id = _campaign_folder(service, campaign_folder_name)

    notify('Downloading video from source...')
    try:
        response = requests.get(video_url, timeout=DOWNLOAD_TIMEOUT)
    except requests.RequestException as e:
        raise GoogleDriveError(f'Failed to download video from the source URL: {e}')
    if not response.ok:
        raise GoogleDriveError(
            f'Failed to download video from the source URL. Status: {response.status_code}. '
            f'Details: {response.text[:200]}'
        )

    notify('Uploading video to Google Drive...')
    mime_type = response.headers.get('Content-Type', 'video/mp4').split(';')[0]
    file_id = upload_bytes(response.content, mime_type, filename, folder_id, service=service)

    logger.info(f"Saved video {filename} to '{campaign_folder_name}' ({len(response.content) / 1024:.1f}KB)")
    notify('Video successfully saved to Google Drive!')
    return {'file_id': file_id, 'folder_id': folder_id, 'folder_link': get_folder_link(folder_id)}
