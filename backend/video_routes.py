"""
Video Routes - API endpoints for video generation
Queues fal.ai (Kling) image-to-video renders and processes them in a worker thread
"""
import threading
import time
import uuid
from flask import Blueprint, request, jsonify

from logging_config import get_logger, get_request_logger
from database import (
    create_video_job, get_video_job, update_video_job_status, update_video_job_message,
    get_next_pending_video_job, list_video_jobs, get_video_jobs_count, delete_video_job,
)
from exporters import sanitize_filename
from fal_service import generate_video, FalServiceError
from google_drive import save_video_from_url_to_drive, GoogleDriveError
from models import ImageRef
from session_store import sessions

logger = get_logger('video_routes')

video_bp = Blueprint('video', __name__, url_prefix='/api/video')

WORKER_IDLE_SLEEP = 2
WORKER_ERROR_SLEEP = 5

# Video worker status
_worker_running = False
_worker_thread = None


def process_video_job(job_id: str):
    """Process a single video job."""
    log = get_request_logger('video_routes', job_id[:8])

    job = get_video_job(job_id)
    if not job:
        logger.error(f"[{job_id[:8]}] Job not found")
        return

    log.info(f"Processing video job for perspective {job.get('perspective_id') or '-'}")
    update_video_job_status(job_id, 'processing', status_message='Starting...')

    try:
        image = ImageRef.from_data_url(job['image_data'])
        video_url = generate_video(
            image,
            job['prompt'],
            status_callback=lambda message: update_video_job_message(job_id, message),
            aspect_ratio=job.get('aspect_ratio') or '1:1'
        )
    except (FalServiceError, ValueError) as e:
        log.error(f"Video generation failed: {e}")
        update_video_job_status(job_id, 'failed', error_message=str(e), status_message='Failed')
        return
    except Exception as e:
        log.error(f"Unexpected error: {e}", exc_info=True)
        update_video_job_status(job_id, 'failed', error_message=str(e), status_message='Failed')
        return

    if not job.get('save_to_drive'):
        update_video_job_status(job_id, 'completed', video_url=video_url, status_message='Success!')
        return

    campaign = job.get('campaign_name') or f"Campaign {time.strftime('%Y-%m-%d')}"
    filename = f"{sanitize_filename(job['prompt'], 'video')}-{job_id[:8]}.mp4"
    try:
        result = save_video_from_url_to_drive(
            video_url, filename, campaign,
            status_callback=lambda message: update_video_job_message(job_id, message)
        )
        log.info(f"Video saved to Drive: {result['folder_link']}")
        update_video_job_status(
            job_id, 'completed',
            video_url=video_url,
            drive_url=result['folder_link'],
            status_message='Video successfully saved to Google Drive!'
        )
    except GoogleDriveError as e:
        log.error(f"Drive upload failed: {e}")
        _record_upload_failure(job_id, video_url, e)
    except Exception as e:
        log.error(f"Unexpected Drive upload error: {e}", exc_info=True)
        _record_upload_failure(job_id, video_url, e)


def _record_upload_failure(job_id: str, video_url: str, error: Exception):
    # Video exists at fal.ai, keep the URL
    update_video_job_status(
        job_id, 'completed',
        video_url=video_url,
        error_message=f"Upload failed: {error}",
        status_message='Rendered, Drive upload failed'
    )


def video_worker():
    """Background worker that processes video jobs from the queue."""
    global _worker_running
    logger.info("Video worker started")

    while _worker_running:
        try:
            job = get_next_pending_video_job()
            if job:
                process_video_job(job['id'])
            else:
                time.sleep(WORKER_IDLE_SLEEP)
        except Exception as e:
            logger.error(f"Video worker error: {e}", exc_info=True)
            time.sleep(WORKER_ERROR_SLEEP)

    logger.info("Video worker stopped")


def start_video_worker():
    """Start the video worker thread if not already running."""
    global _worker_running, _worker_thread

    if _worker_running and _worker_thread and _worker_thread.is_alive():
        return

    _worker_running = True
    _worker_thread = threading.Thread(target=video_worker, daemon=True)
    _worker_thread.start()
    logger.info("Video worker thread started")


def _job_response(job: dict) -> dict:
    return {
        'job_id': job['id'],
        'status': job['status'],
        'session_id': job.get('session_id'),
        'perspective_id': job.get('perspective_id'),
        'prompt': job.get('prompt'),
        'status_message': job.get('status_message'),
        'video_url': job.get('video_url'),
        'drive_url': job.get('drive_url'),
        'error_message': job.get('error_message'),
        'created_at': job.get('created_at'),
        'started_at': job.get('started_at'),
        'completed_at': job.get('completed_at'),
    }


# ============ API Endpoints ============

@video_bp.route('/create', methods=['POST'])
def create_video():
    """
    Queue a video render.

    Expects JSON with either:
    - session_id + perspective_id: render a generated perspective
      (frame_index picks an extended frame instead of the main image)
    - image: data URL of the source image
    Plus:
    - prompt: motion prompt (defaults to the perspective's video prompt)
    - aspect_ratio: default 1:1
    - save_to_drive / campaign_name: also store the video in Drive
    """
    request_id = str(uuid.uuid4())[:8]
    log = get_request_logger('video_routes', request_id)

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'JSON body required'}), 400

    session_id = data.get('session_id')
    perspective_id = data.get('perspective_id')
    prompt = str(data.get('prompt') or '').strip()
    campaign_name = data.get('campaign_name')

    if session_id:
        session = sessions.get(session_id)
        if session is None:
            return jsonify({'error': f'Session not found: {session_id}'}), 404
        with session.lock:
            perspective = session.data.find(perspective_id) if perspective_id else None
            if perspective is None:
                return jsonify({'error': f'Perspective not found: {perspective_id}'}), 404
            frame_index = data.get('frame_index')
            if frame_index is not None:
                try:
                    index = int(frame_index)
                    if index < 0:
                        raise IndexError(index)
                    image = perspective.extended_frames[index].ref
                except (IndexError, TypeError, ValueError):
                    return jsonify({'error': f'Frame not found: {frame_index}'}), 404
            else:
                image = perspective.main_image.ref
            prompt = prompt or perspective.veo_prompt or ''
            campaign_name = campaign_name or session.campaign_name
    else:
        try:
            image = ImageRef.from_data_url(data.get('image') or '')
        except ValueError:
            return jsonify({'error': 'image must be a base64 data URL (or use session_id + perspective_id)'}), 400

    if not prompt:
        return jsonify({'error': 'A video prompt is required'}), 400

    job_id = create_video_job(
        prompt=prompt,
        image_data=image.to_data_url(),
        session_id=session_id,
        perspective_id=perspective_id,
        aspect_ratio=data.get('aspect_ratio') or '1:1',
        campaign_name=campaign_name,
        save_to_drive=bool(data.get('save_to_drive'))
    )
    log.info(f"Created video job: {job_id}")

    start_video_worker()

    return jsonify({
        'status': 'queued',
        'job_id': job_id,
        'message': 'Video queued for processing. Poll /api/video/status/{job_id} for progress.'
    }), 202


@video_bp.route('/status/<job_id>', methods=['GET'])
def get_video_status(job_id):
    """Get status of a video generation job."""
    job = get_video_job(job_id)
    if not job:
        return jsonify({'error': 'Job not found'}), 404
    return jsonify(_job_response(job))


@video_bp.route('/jobs', methods=['GET'])
def list_jobs():
    """
    List video jobs.

    Query params:
    - limit (default 50), offset (default 0)
    - status, session_id: optional filters
    """
    limit = request.args.get('limit', 50, type=int)
    offset = request.args.get('offset', 0, type=int)
    status = request.args.get('status') or None
    session_id = request.args.get('session_id') or None

    jobs = list_video_jobs(status=status, session_id=session_id, limit=limit, offset=offset)
    return jsonify({
        'jobs': [_job_response(j) for j in jobs],
        'total': get_video_jobs_count(status=status, session_id=session_id),
        'limit': limit,
        'offset': offset
    })


@video_bp.route('/jobs/<job_id>', methods=['DELETE'])
def delete_job(job_id):
    """Delete a video job (processing jobs cannot be deleted)."""
    job = get_video_job(job_id)
    if not job:
        return jsonify({'error': 'Job not found'}), 404
    if job['status'] == 'processing':
        return jsonify({'error': 'Cannot delete a job that is processing'}), 409
    delete_video_job(job_id)
    logger.info(f"Deleted video job {job_id}")
    return jsonify({'status': 'deleted', 'job_id': job_id})
