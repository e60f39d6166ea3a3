"""
Export Routes
Download a session's results as ZIP / PDF / text, or push them to Google Drive
"""
import io
import uuid
from datetime import datetime

from flask import Blueprint, jsonify, request, send_file

from exporters import (
    ExportError, build_all_posts_text, build_images_zip, build_pdf_report,
    pdf_filename, zip_filename,
)
from database import update_job_status
from google_drive import GoogleDriveError, save_to_drive
from logging_config import get_logger, get_request_logger
from session_store import sessions
from settings import is_google_drive_configured

logger = get_logger('export_routes')

export_bp = Blueprint('export', __name__, url_prefix='/api/export')


def _session_or_404(session_id):
    session = sessions.get(session_id)
    if session is None:
        return None, (jsonify({'error': f'Session not found: {session_id}'}), 404)
    return session, None


@export_bp.route('/<session_id>/zip', methods=['GET'])
def export_zip(session_id):
    """Download every main image as a ZIP."""
    session, error = _session_or_404(session_id)
    if error:
        return error

    with session.lock:
        try:
            payload = build_images_zip(session.data, session.campaign_name)
        except ExportError as e:
            return jsonify({'error': str(e)}), 400
        name = zip_filename(session.campaign_name)

    return send_file(io.BytesIO(payload), mimetype='application/zip',
                     as_attachment=True, download_name=name)


@export_bp.route('/<session_id>/pdf', methods=['GET'])
def export_pdf(session_id):
    """Download the campaign report."""
    session, error = _session_or_404(session_id)
    if error:
        return error

    with session.lock:
        payload = build_pdf_report(session.data, session.campaign_name, session.product_info.name)
        name = pdf_filename(session.campaign_name)

    return send_file(io.BytesIO(payload), mimetype='application/pdf',
                     as_attachment=True, download_name=name)


@export_bp.route('/<session_id>/text', methods=['GET'])
def export_text(session_id):
    """All social posts as one copy-paste block."""
    session, error = _session_or_404(session_id)
    if error:
        return error

    with session.lock:
        text = build_all_posts_text(session.data, session.campaign_name, session.product_info.name)
    return jsonify({'text': text})


@export_bp.route('/<session_id>/drive', methods=['POST'])
def export_drive(session_id):
    """
    Upload images and the content sheet to Google Drive.

    Optional JSON:
    - campaign_name: folder name (defaults to the session's campaign or today's date)
    """
    request_id = str(uuid.uuid4())[:8]
    log = get_request_logger('export_routes', request_id)

    session, error = _session_or_404(session_id)
    if error:
        return error

    if not is_google_drive_configured():
        return jsonify({'error': 'Google Drive is not configured. Run the OAuth setup first (python setup_oauth.py).'}), 400

    data = request.get_json(silent=True) or {}
    with session.lock:
        if not session.data.perspectives:
            return jsonify({'error': 'No images to export'}), 400
        campaign = (str(data.get('campaign_name') or '').strip()
                    or session.campaign_name
                    or f"Campaign {datetime.now().strftime('%Y-%m-%d')}")
        snapshot = session.data

    try:
        result = save_to_drive(snapshot, campaign, request_id=request_id)
    except GoogleDriveError as e:
        log.error(f"Drive export failed: {e}")
        return jsonify({'error': f'Failed to save to Google Drive: {e}'}), 500
    except Exception as e:
        log.error(f"Unexpected Drive export error: {e}", exc_info=True)
        return jsonify({'error': f'Failed to save to Google Drive: {e}'}), 500

    if session.job_id:
        update_job_status(session.job_id, 'completed', drive_folder_url=result['folder_link'])

    return jsonify({'status': 'saved', **result})
