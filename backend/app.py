"""
Rare Visual Catalyst - Flask Backend
"""
import json
import threading
import time
import uuid
from flask import Flask, request, jsonify
from flask_cors import CORS
from dotenv import load_dotenv
from werkzeug.utils import secure_filename

# Load environment variables first
load_dotenv()

# Import logging (must be after dotenv for LOG_DIR/LOG_LEVEL env vars)
from logging_config import setup_logging, get_logger, get_request_logger

# Initialize logging
setup_logging()
logger = get_logger('app')

# Import our modules
import gemini_service
from gemini_service import GeminiServiceError
from admin_routes import admin_bp
from video_routes import video_bp, start_video_worker
from preset_routes import preset_bp
from export_routes import export_bp
from catalog import MAX_TOTAL_IMAGES, build_angle_list, get_options, validate_output_count
from database import (
    create_job, update_job_status, get_job, delete_job, list_jobs, get_jobs_count,
    reset_stuck_video_jobs,
)
from image_utils import crop_image, is_allowed_image, load_image_ref
from models import (
    CustomLifestyle, FocusArea, GeneratedImage, GenerationOptions, ImageRef, ProductInfo,
)
from session_store import sessions

app = Flask(__name__)
CORS(app)

# Register preset blueprint
app.register_blueprint(preset_bp)

# Register video blueprint
app.register_blueprint(video_bp)

# Register export blueprint
app.register_blueprint(export_bp)

# Register admin blueprint
app.register_blueprint(admin_bp)

app.config['MAX_CONTENT_LENGTH'] = 100 * 1024 * 1024  # 100MB max upload

MAX_UPLOADS = 3  # main + secondary, and separately reference images


def _start_background(target, *args):
    """Run a long job in a daemon thread; clients poll for progress."""
    thread = threading.Thread(target=target, args=args, daemon=True)
    thread.start()
    return thread


def _collect_images(field_names, log):
    """Read uploaded images from the given multipart fields (first MAX_UPLOADS kept)."""
    images = []
    for field_name in field_names:
        for upload in request.files.getlist(field_name):
            if not upload or not upload.filename:
                continue
            if not is_allowed_image(upload.filename):
                log.warning(f"Skipping unsupported upload: {secure_filename(upload.filename)}")
                continue
            images.append(load_image_ref(upload))
    return images[:MAX_UPLOADS]


def _form_json(name, default=None):
    raw = request.form.get(name)
    if not raw:
        return default
    return json.loads(raw)


def _session_or_404(session_id):
    session = sessions.get(session_id)
    if session is None:
        return None, (jsonify({'error': f'Session not found: {session_id}'}), 404)
    return session, None


def _perspective_or_404(session_id, perspective_id):
    session, error = _session_or_404(session_id)
    if error:
        return None, None, error
    perspective = session.data.find(perspective_id)
    if perspective is None:
        return session, None, (jsonify({'error': f'Perspective not found: {perspective_id}'}), 404)
    return session, perspective, None


@app.route('/api/health', methods=['GET'])
def health_check():
    """Health check endpoint"""
    return jsonify({'status': 'ok', 'message': 'Rare Visual Catalyst API is running'})


@app.route('/api/options', methods=['GET'])
def creative_options():
    """Creative vocabularies for the settings form"""
    return jsonify(get_options())


@app.route('/api/status/<session_id>', methods=['GET'])
def get_status(session_id):
    """Get progress status for a session"""
    progress = sessions.get_progress(session_id)
    if progress is not None:
        return jsonify(progress)
    return jsonify({'step': 'unknown', 'message': 'Session not found', 'progress': 0})


@app.route('/api/sessions/<session_id>', methods=['GET'])
def get_session(session_id):
    """Full session state: inputs overview, progress and generated results"""
    session, error = _session_or_404(session_id)
    if error:
        return error
    return jsonify(session.summary())


def update_progress(session_id, step, message, progress, details=None):
    """Update progress status for a session"""
    sessions.update_progress(session_id, step, message, progress, details)


def run_generation(session_id):
    """Background task for the full generation pipeline"""
    log = get_request_logger('app', session_id)
    session = sessions.get(session_id)
    if session is None:
        log.error("Session vanished before generation started")
        return

    start_time = time.time()
    job_id = session.job_id
    log.info(f"Starting generation: {len(session.options.selected_angles)} angles "
             f"x {session.options.images_per_angle}")

    # Update job status to processing
    update_job_status(job_id, 'processing')

    def progress_callback(step, message, percent):
        update_progress(session_id, step, message, percent)

    try:
        data = gemini_service.generate_content_from_image(
            session.main_image,
            session.secondary_images,
            session.focus_image,
            session.reference_images,
            session.product_info,
            session.options,
            session.custom_lifestyle,
            session.description,
            progress_callback=progress_callback,
            request_id=session_id
        )
    except GeminiServiceError as e:
        log.error(f"Generation failed: {e}")
        update_progress(session_id, 'error', str(e), 0)
        update_job_status(job_id, 'failed', error_message=str(e))
        return
    except Exception as e:
        log.error(f"Unexpected error: {e}", exc_info=True)
        update_progress(session_id, 'error', f'Unexpected error: {e}', 0)
        update_job_status(job_id, 'failed', error_message=f'Unexpected error: {e}')
        return

    with session.lock:
        session.data = data

    elapsed = time.time() - start_time
    log.info(f"Generation complete in {elapsed:.1f}s: {len(data.perspectives)} images")

    update_job_status(job_id, 'completed', completed_images=len(data.perspectives))
    update_progress(session_id, 'complete', 'Done!', 100, {
        'stats': {
            'generated_images': len(data.perspectives),
            'social_posts': len(data.social_posts),
            'elapsed_seconds': round(elapsed, 1),
        }
    })


@app.route('/api/generate', methods=['POST'])
def generate_content():
    """
    Main endpoint to generate the content deck (async)

    Multipart fields:
    - main_image: up to 3 files; the first is the main image, the rest are secondary
    - reference_images: up to 3 style reference files
    - options: JSON generation options (plus product_studio_angles, custom_angles)
    - focus_area: JSON {x, y, width, height} crop of the main image
    - product_name, selling_points, product_link, description, campaign_name
    - custom_lifestyle: JSON {props, atmosphere, audience}

    Returns session_id immediately, then runs generation in background.
    Poll /api/status/<session_id> for progress.
    """
    # Create unique session ID for this generation
    session_id = str(uuid.uuid4())[:8]
    log = get_request_logger('app', session_id)

    try:
        images = _collect_images(['main_image', 'secondary_images'], log)
        if not images:
            log.warning("Validation failed: missing main image")
            return jsonify({'error': 'Please upload at least one main image.'}), 400
        main_image, secondary_images = images[0], images[1:]
        reference_images = _collect_images(['reference_images'], log)

        raw_options = _form_json('options', {})
        if not isinstance(raw_options, dict):
            raise ValueError('options must be a JSON object')
        product_studio_angles = raw_options.pop('product_studio_angles', [])
        custom_angles = raw_options.pop('custom_angles', [])
        options = GenerationOptions.from_dict(raw_options)
        options.selected_angles = build_angle_list(
            options.selected_angles, product_studio_angles, custom_angles
        )

        try:
            total_images = validate_output_count(len(options.selected_angles), options.images_per_angle)
        except ValueError as e:
            log.warning(f"Validation failed: {e}")
            return jsonify({'error': str(e)}), 400

        focus_image = crop_image(main_image, FocusArea.from_dict(_form_json('focus_area')))
        custom_lifestyle = CustomLifestyle.from_dict(_form_json('custom_lifestyle'))
        product_info = ProductInfo(
            name=request.form.get('product_name', ''),
            selling_points=request.form.get('selling_points', ''),
            link=request.form.get('product_link', ''),
        )
        description = request.form.get('description', '')
        campaign_name = request.form.get('campaign_name', '')

        log.info(f"New request: product='{product_info.name}' angles={len(options.selected_angles)} "
                 f"images={total_images} refs={len(reference_images)}")
        log.debug(f"Secondary images: {len(secondary_images)}, focus crop: {focus_image is not None}")

        # Create job in database for tracking
        job_id = create_job(
            job_type='generate',
            product_name=product_info.name,
            campaign_name=campaign_name,
            description=description,
            options=options.to_dict(),
            total_images=total_images
        )
        log.info(f"Created job {job_id} in database")

        sessions.create(
            main_image,
            session_id=session_id,
            secondary_images=secondary_images,
            focus_image=focus_image,
            reference_images=reference_images,
            product_info=product_info,
            options=options,
            custom_lifestyle=custom_lifestyle,
            description=description,
            campaign_name=campaign_name,
            job_id=job_id,
        )
        update_progress(session_id, 'starting', 'Starting generation...', 0)

        _start_background(run_generation, session_id)
        log.info("Background thread started")

        # Return immediately with session_id for polling
        return jsonify({
            'status': 'started',
            'session_id': session_id,
            'job_id': job_id,
            'total_images': total_images,
            'message': 'Generation started. Poll /api/status/{session_id} for progress.'
        })

    except ValueError as e:
        log.error(f"Invalid input: {e}")
        return jsonify({'error': f'Invalid input: {e}'}), 400


def _image_for_request(log):
    """Main image from a `main_image` upload or from an existing session."""
    upload = request.files.get('main_image')
    if upload and upload.filename:
        return load_image_ref(upload), None
    data = request.get_json(silent=True) or {}
    session_id = data.get('session_id') or request.form.get('session_id')
    if session_id:
        session = sessions.get(session_id)
        if session is not None:
            return session.main_image, session
        log.warning(f"Unknown session {session_id}")
    return None, None


@app.route('/api/brainstorm', methods=['POST'])
def brainstorm_angles():
    """
    Suggest creative camera angles for the main image.

    Accepts a `main_image` upload or JSON {session_id}. Optional fields
    `product_name`, `selling_points`, and `selected_count` / `images_per_angle`
    to trim suggestions to the remaining image budget.
    """
    request_id = str(uuid.uuid4())[:8]
    log = get_request_logger('app', request_id)

    image, session = _image_for_request(log)
    if image is None:
        return jsonify({'error': 'Please upload a main image first for the AI to analyze.'}), 400

    data = request.get_json(silent=True) or request.form
    product_info = ProductInfo(
        name=data.get('product_name') or (session.product_info.name if session else ''),
        selling_points=data.get('selling_points') or (session.product_info.selling_points if session else ''),
    )

    images_per_angle = max(1, int(data.get('images_per_angle') or 1))
    selected_count = int(data.get('selected_count') or 0)
    available_slots = (MAX_TOTAL_IMAGES - selected_count * images_per_angle) // images_per_angle
    if available_slots <= 0:
        return jsonify({
            'error': 'Please deselect some standard angles or reduce quantity to make room for brainstormed ideas.'
        }), 400

    try:
        angles = gemini_service.generate_brainstorm_angles(image, product_info)
    except Exception as e:
        log.error(f"Brainstorm failed: {e}", exc_info=True)
        return jsonify({'error': 'Failed to brainstorm angles. Please try again.'}), 500

    return jsonify({'angles': angles[:available_slots]})


@app.route('/api/analyze', methods=['POST'])
def analyze_main_image():
    """Free-text visual analysis of the main image (upload or session)."""
    request_id = str(uuid.uuid4())[:8]
    log = get_request_logger('app', request_id)

    image, _ = _image_for_request(log)
    if image is None:
        return jsonify({'error': 'Please upload an image first.'}), 400

    try:
        analysis = gemini_service.analyze_image(image)
    except Exception as e:
        log.error(f"Analysis failed: {e}", exc_info=True)
        return jsonify({'error': 'Failed to analyze image. Please try again.'}), 500

    return jsonify({'analysis': analysis})


def run_expansion(session_id, expansion_prompt):
    """Background task: two more perspectives appended to the session"""
    log = get_request_logger('app', session_id)
    session = sessions.get(session_id)
    if session is None:
        return

    with session.lock:
        options = GenerationOptions.from_dict(session.options.to_dict())
        existing = list(session.data.perspectives)
    options.selected_angles = []
    options.selected_focus_subjects = []
    options.images_per_angle = 1

    def progress_callback(step, message, percent):
        update_progress(session_id, step, message, percent)

    try:
        new_perspectives = gemini_service.generate_more_images(
            session.main_image,
            session.secondary_images,
            session.focus_image,
            session.reference_images,
            session.product_info,
            options,
            existing,
            expansion_prompt,
            progress_callback=progress_callback,
            request_id=session_id
        )
    except Exception as e:
        log.error(f"Expansion failed: {e}", exc_info=True)
        update_progress(session_id, 'error', f'An unknown error occurred while expanding: {e}', 0)
        return

    with session.lock:
        session.data.perspectives.extend(new_perspectives)
    update_progress(session_id, 'complete', f'Added {len(new_perspectives)} images', 100,
                    {'new_perspectives': [p.id for p in new_perspectives]})


@app.route('/api/sessions/<session_id>/expand', methods=['POST'])
def expand_session(session_id):
    """
    Continue the shoot with a free-text goal (async).

    Expected JSON:
    - prompt: what the new images should explore
    """
    session, error = _session_or_404(session_id)
    if error:
        return error

    data = request.get_json(silent=True) or {}
    expansion_prompt = str(data.get('prompt') or '').strip()
    if not expansion_prompt or not session.data.perspectives:
        return jsonify({'error': 'Please enter a prompt to expand on the results.'}), 400

    update_progress(session_id, 'expanding', 'Creating new creative angles...', 0)
    _start_background(run_expansion, session_id, expansion_prompt)
    return jsonify({'status': 'started', 'session_id': session_id})


@app.route('/api/sessions/<session_id>/perspectives/<perspective_id>/regenerate', methods=['POST'])
def regenerate_perspective(session_id, perspective_id):
    """Re-render a perspective from its prompt and replace its main image."""
    session, perspective, error = _perspective_or_404(session_id, perspective_id)
    if error:
        return error

    log = get_request_logger('app', session_id)
    with session.lock:
        if perspective.is_regenerating:
            return jsonify({'error': 'Perspective is already regenerating'}), 409
        perspective.is_regenerating = True
        perspective.error = None

    try:
        image = gemini_service.generate_single_image(
            perspective.prompt,
            session.main_image,
            session.secondary_images,
            session.focus_image,
            session.reference_images,
            session.options.aspect_ratio,
            session.options.custom_dimensions
        )
    except Exception as e:
        log.error(f"Regeneration failed for {perspective_id}: {e}")
        with session.lock:
            perspective.is_regenerating = False
            perspective.error = str(e) or 'An unknown error occurred during regeneration.'
        return jsonify({'error': perspective.error, 'perspective': perspective.to_dict()}), 500

    with session.lock:
        perspective.main_image = image
        perspective.is_regenerating = False
        return jsonify({'perspective': perspective.to_dict()})


@app.route('/api/sessions/<session_id>/perspectives/<perspective_id>/extend', methods=['POST'])
def extend_perspective(session_id, perspective_id):
    """Outpaint the main image into video frames plus a transition caption."""
    session, perspective, error = _perspective_or_404(session_id, perspective_id)
    if error:
        return error

    log = get_request_logger('app', session_id)
    with session.lock:
        if perspective.is_extending:
            return jsonify({'error': 'Perspective is already extending'}), 409
        perspective.is_extending = True
        perspective.error = None
        original = perspective.main_image.ref

    try:
        frames, transition_text = gemini_service.extend_frame_for_video(original)
    except Exception as e:
        log.error(f"Frame extension failed for {perspective_id}: {e}")
        with session.lock:
            perspective.is_extending = False
            perspective.error = str(e) or 'An unknown error occurred during frame extension.'
        return jsonify({'error': perspective.error, 'perspective': perspective.to_dict()}), 500

    with session.lock:
        perspective.extended_frames = frames
        perspective.transition_text = transition_text
        perspective.is_extending = False
        return jsonify({'perspective': perspective.to_dict()})


@app.route('/api/sessions/<session_id>/perspectives/<perspective_id>/refine', methods=['POST'])
def refine_perspective(session_id, perspective_id):
    """
    Refined candidate of the main image (not applied).

    Expected JSON:
    - prompt: refinement instruction
    """
    session, perspective, error = _perspective_or_404(session_id, perspective_id)
    if error:
        return error

    data = request.get_json(silent=True) or {}
    refine_prompt = str(data.get('prompt') or '').strip()
    if not refine_prompt:
        return jsonify({'error': 'A refinement prompt is required'}), 400

    try:
        image = gemini_service.refine_image(perspective.main_image.ref, refine_prompt)
    except Exception as e:
        logger.error(f"[{session_id}] Refine failed for {perspective_id}: {e}")
        return jsonify({'error': str(e)}), 500
    return jsonify({'image': image.to_dict()})


@app.route('/api/sessions/<session_id>/perspectives/<perspective_id>/variations', methods=['POST'])
def perspective_variations(session_id, perspective_id):
    """Up to three variation candidates of the main image (not applied)."""
    session, perspective, error = _perspective_or_404(session_id, perspective_id)
    if error:
        return error

    try:
        variations = gemini_service.generate_image_variations(perspective.main_image.ref)
    except Exception as e:
        logger.error(f"[{session_id}] Variations failed for {perspective_id}: {e}")
        return jsonify({'error': str(e)}), 500
    return jsonify({'variations': [v.to_dict() for v in variations]})


@app.route('/api/sessions/<session_id>/perspectives/<perspective_id>/edit', methods=['POST'])
def edit_perspective(session_id, perspective_id):
    """
    Inpaint the masked area of the main image (not applied).

    Expected JSON:
    - mask: PNG data URL, white where the image should change
    - prompt: what to paint there
    """
    session, perspective, error = _perspective_or_404(session_id, perspective_id)
    if error:
        return error

    data = request.get_json(silent=True) or {}
    edit_prompt = str(data.get('prompt') or '').strip()
    if not edit_prompt:
        return jsonify({'error': 'An edit prompt is required'}), 400
    try:
        mask = ImageRef.from_data_url(data.get('mask') or '')
    except ValueError:
        return jsonify({'error': 'mask must be a base64 data URL'}), 400

    try:
        edited = gemini_service.edit_image(perspective.main_image.ref, mask, edit_prompt)
    except Exception as e:
        logger.error(f"[{session_id}] Edit failed for {perspective_id}: {e}")
        return jsonify({'error': str(e)}), 500
    return jsonify({'image': {'src': edited.to_data_url(), 'label': 'Edited', 'description': None}})


@app.route('/api/sessions/<session_id>/perspectives/<perspective_id>/image', methods=['POST'])
def replace_perspective_image(session_id, perspective_id):
    """
    Replace the main image with a chosen candidate (refine / variation / edit).

    Expected JSON: an image object {src, label, description}
    """
    session, perspective, error = _perspective_or_404(session_id, perspective_id)
    if error:
        return error

    data = request.get_json(silent=True) or {}
    try:
        image = GeneratedImage.from_dict(data)
    except (KeyError, ValueError):
        return jsonify({'error': 'src must be a base64 data URL'}), 400

    with session.lock:
        if not image.label:
            image.label = perspective.main_image.label
        perspective.main_image = image
        return jsonify({'perspective': perspective.to_dict()})


@app.route('/api/sessions/<session_id>/perspectives/<perspective_id>/error', methods=['DELETE'])
def clear_perspective_error(session_id, perspective_id):
    """Dismiss the last regenerate/extend error of a perspective"""
    session, perspective, error = _perspective_or_404(session_id, perspective_id)
    if error:
        return error
    with session.lock:
        perspective.error = None
        return jsonify({'perspective': perspective.to_dict()})


@app.route('/api/jobs/<job_id>', methods=['GET'])
def get_job_details(job_id):
    """Get single job details for admin dashboard"""
    job = get_job(job_id)
    if job:
        return jsonify(job)
    return jsonify({'error': 'Job not found'}), 404


@app.route('/api/jobs/<job_id>', methods=['DELETE'])
def delete_job_endpoint(job_id):
    """Delete a job record"""
    if delete_job(job_id):
        logger.info(f"Deleted job {job_id}")
        return jsonify({'status': 'deleted', 'job_id': job_id})
    return jsonify({'error': 'Job not found'}), 404


@app.route('/api/jobs', methods=['GET'])
def list_all_jobs():
    """List all jobs with optional filtering for admin dashboard"""
    # Get query params
    limit = request.args.get('limit', 20, type=int)
    offset = request.args.get('offset', 0, type=int)
    job_type = request.args.get('type', None)
    status = request.args.get('status', None)

    # Fetch jobs
    jobs = list_jobs(
        job_type=job_type if job_type else None,
        status=status if status else None,
        limit=limit,
        offset=offset
    )

    total = get_jobs_count(
        job_type=job_type if job_type else None,
        status=status if status else None
    )

    return jsonify({
        'jobs': jobs,
        'total': total,
        'limit': limit,
        'offset': offset
    })


if __name__ == '__main__':
    reset = reset_stuck_video_jobs()
    if reset:
        logger.info(f"Re-queued {reset} video jobs left processing by a previous run")
    start_video_worker()
    logger.info("Starting Flask server on port 5001")
    app.run(debug=False, host='0.0.0.0', port=5001)
