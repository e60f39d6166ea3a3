"""
Admin API Routes
Endpoints for managing API keys and model settings with password protection

Security:
- Constant-time password comparison to prevent timing attacks
- Rate limiting on login attempts to prevent brute force
- Session tokens with expiration
"""
import os
import secrets
import time
from functools import wraps
from flask import Blueprint, request, jsonify
from dotenv import find_dotenv, load_dotenv, set_key, unset_key

from logging_config import get_logger
from settings import MANAGED_KEYS, SECRET_KEYS

logger = get_logger('admin')

admin_bp = Blueprint('admin', __name__, url_prefix='/api/admin')

# Simple session store
# Format: {token: {'expires': timestamp}}
active_sessions = {}
SESSION_DURATION = 3600  # 1 hour

# Rate limiting for login attempts
# Format: {ip_address: {'attempts': count, 'lockout_until': timestamp}}
login_attempts = {}
MAX_LOGIN_ATTEMPTS = 5
LOCKOUT_DURATION = 300  # 5 minutes


class EnvFileError(Exception):
    """Raised when the .env file cannot be written"""
    pass


def _get_client_ip():
    """Get client IP address, handling proxies."""
    forwarded = request.headers.get('X-Forwarded-For')
    if forwarded:
        return forwarded.split(',')[0].strip()
    return request.remote_addr or 'unknown'


def _check_rate_limit(ip: str) -> tuple[bool, int]:
    """
    Check if IP is rate limited.
    Returns (is_allowed, seconds_until_unlock)
    """
    now = time.time()
    record = login_attempts.get(ip)
    if record is None:
        return True, 0

    if record.get('lockout_until', 0) > now:
        return False, int(record['lockout_until'] - now)

    # Lockout expired
    if record.get('lockout_until', 0) > 0:
        login_attempts[ip] = {'attempts': 0, 'lockout_until': 0}

    return True, 0


def _record_login_attempt(ip: str, success: bool):
    """Record a login attempt and apply lockout if needed."""
    if success or ip not in login_attempts:
        login_attempts[ip] = {'attempts': 0, 'lockout_until': 0}
    if success:
        return

    login_attempts[ip]['attempts'] += 1
    if login_attempts[ip]['attempts'] >= MAX_LOGIN_ATTEMPTS:
        login_attempts[ip]['lockout_until'] = time.time() + LOCKOUT_DURATION
        logger.warning(f"IP {ip} locked out for {LOCKOUT_DURATION}s after {MAX_LOGIN_ATTEMPTS} failed attempts")


def cleanup_expired_sessions():
    """Remove expired sessions"""
    now = time.time()
    expired = [token for token, data in active_sessions.items() if data['expires'] < now]
    for token in expired:
        del active_sessions[token]


def require_auth(f):
    """Decorator to require valid admin session"""
    @wraps(f)
    def decorated(*args, **kwargs):
        token = request.headers.get('X-Admin-Token')
        if not token:
            return jsonify({'error': 'No auth token provided'}), 401

        cleanup_expired_sessions()

        if token not in active_sessions:
            return jsonify({'error': 'Invalid or expired token'}), 401

        # Extend session on activity
        active_sessions[token]['expires'] = time.time() + SESSION_DURATION

        return f(*args, **kwargs)
    return decorated


def mask_key(key: str) -> str:
    """Mask API key for display (show first 4 and last 4 chars)"""
    if not key or len(key) < 12:
        return '****'
    return f"{key[:4]}...{key[-4:]}"


def get_env_path() -> str:
    """ENV_FILE if set, else the nearest .env, else backend/.env (created on demand)."""
    dotenv_path = os.getenv('ENV_FILE') or find_dotenv(usecwd=True)
    if not dotenv_path:
        dotenv_path = os.path.join(os.path.dirname(__file__), '.env')
    if not os.path.exists(dotenv_path):
        open(dotenv_path, 'a').close()
    return dotenv_path


def update_env_file(key: str, value: str):
    """Write a key to the .env file and the running environment"""
    dotenv_path = get_env_path()
    success, _, _ = set_key(dotenv_path, key, value)
    if not success:
        raise EnvFileError(f'Could not write {key} to {dotenv_path}')
    load_dotenv(dotenv_path, override=True)
    os.environ[key] = value
    logger.info(f"Updated {key} in .env file")


def remove_env_key(key: str):
    """Remove a key from the .env file and the running environment"""
    dotenv_path = get_env_path()
    # unset_key reports failure when the key is absent, which is fine here
    unset_key(dotenv_path, key)
    os.environ.pop(key, None)
    logger.info(f"Removed {key} from .env file")


def _describe_key(name: str) -> dict:
    value = os.getenv(name, '')
    if name in SECRET_KEYS:
        return {'masked': mask_key(value), 'is_set': bool(value)}
    return {'value': value, 'is_set': bool(value)}


@admin_bp.route('/login', methods=['POST'])
def admin_login():
    """
    Authenticate with admin password.

    Expected JSON:
    - password: Admin password

    Returns:
    - token: Session token (valid for 1 hour)
    """
    client_ip = _get_client_ip()
    is_allowed, seconds_left = _check_rate_limit(client_ip)

    if not is_allowed:
        logger.warning(f"Rate limited login attempt from {client_ip}")
        return jsonify({
            'error': 'Too many login attempts. Please try again later.',
            'retry_after': seconds_left
        }), 429

    data = request.get_json(silent=True) or {}
    password = str(data.get('password', ''))

    admin_password = os.getenv('ADMIN_PASSWORD')
    if not admin_password:
        logger.error("ADMIN_PASSWORD not configured")
        return jsonify({'error': 'Admin not configured'}), 500

    if not secrets.compare_digest(password.encode('utf-8'), admin_password.encode('utf-8')):
        _record_login_attempt(client_ip, success=False)
        logger.warning(f"Failed admin login attempt from {client_ip}")
        return jsonify({'error': 'Invalid password'}), 401

    _record_login_attempt(client_ip, success=True)

    token = secrets.token_urlsafe(32)
    active_sessions[token] = {'expires': time.time() + SESSION_DURATION}
    logger.info(f"Admin login successful from {client_ip}")

    return jsonify({
        'status': 'authenticated',
        'token': token,
        'expires_in': SESSION_DURATION
    })


@admin_bp.route('/logout', methods=['POST'])
@require_auth
def admin_logout():
    """Invalidate current session"""
    token = request.headers.get('X-Admin-Token')
    active_sessions.pop(token, None)
    return jsonify({'status': 'logged_out'})


@admin_bp.route('/verify', methods=['GET'])
@require_auth
def verify_session():
    """Verify current session is valid"""
    return jsonify({'status': 'valid'})


@admin_bp.route('/keys', methods=['GET'])
@require_auth
def get_api_keys():
    """Current keys and model settings (secrets masked)."""
    return jsonify({'keys': {name: _describe_key(name) for name in MANAGED_KEYS}})


@admin_bp.route('/keys', methods=['PUT'])
@require_auth
def update_api_keys():
    """
    Update keys and model settings.

    Expected JSON: any subset of the managed keys, e.g.
    - GEMINI_API_KEY, GEMINI_ENDPOINT, GEMINI_TEXT_MODEL, GEMINI_IMAGE_MODEL, FAL_KEY

    Only provided, non-empty values are written; unknown keys are rejected.
    """
    data = request.get_json(silent=True) or {}

    unknown = [k for k in data if k not in MANAGED_KEYS]
    if unknown:
        return jsonify({'error': f'Unknown keys: {", ".join(unknown)}'}), 400

    updated = []
    errors = []
    for name in MANAGED_KEYS:
        if name not in data:
            continue
        new_value = str(data[name] or '').strip()
        if not new_value:
            continue
        try:
            update_env_file(name, new_value)
            updated.append(name)
        except (EnvFileError, OSError) as e:
            logger.error(f"Failed to update {name}: {e}")
            errors.append(name)

    if errors:
        return jsonify({
            'status': 'partial',
            'updated': updated,
            'errors': errors,
            'message': f'Failed to update: {", ".join(errors)}'
        }), 500

    if not updated:
        return jsonify({
            'status': 'no_changes',
            'message': 'No keys provided to update'
        })

    return jsonify({
        'status': 'updated',
        'updated': updated,
        'message': f'Updated: {", ".join(updated)}'
    })


@admin_bp.route('/keys/<key_name>', methods=['DELETE'])
@require_auth
def clear_api_key(key_name):
    """Clear one managed key (falls back to defaults where they exist)."""
    if key_name not in MANAGED_KEYS:
        return jsonify({'error': f'Unknown key: {key_name}'}), 404
    try:
        remove_env_key(key_name)
    except OSError as e:
        logger.error(f"Failed to clear {key_name}: {e}")
        return jsonify({'error': f'Server error: {e}'}), 500
    return jsonify({'status': 'cleared', 'key': key_name})
