"""
Runtime Settings
API keys, endpoints and model names read from the environment (.env)

Values are read on every call so keys updated through the admin API take
effect without a restart.
"""
import os
from dotenv import load_dotenv

load_dotenv()

DEFAULT_TEXT_MODEL = 'gemini-3-pro-preview'
DEFAULT_IMAGE_MODEL = 'gemini-3-pro-image-preview'

# Keys that can be managed through /api/admin/keys
MANAGED_KEYS = (
    'GEMINI_API_KEY',
    'GEMINI_ENDPOINT',
    'GEMINI_TEXT_MODEL',
    'GEMINI_IMAGE_MODEL',
    'FAL_KEY',
)

# Keys holding secrets (masked when listed)
SECRET_KEYS = {'GEMINI_API_KEY', 'FAL_KEY'}


def get_gemini_api_key() -> str:
    return os.getenv('GEMINI_API_KEY') or os.getenv('API_KEY') or ''


def get_gemini_endpoint() -> str:
    return os.getenv('GEMINI_ENDPOINT', '').strip()


def get_text_model() -> str:
    return os.getenv('GEMINI_TEXT_MODEL') or DEFAULT_TEXT_MODEL


def get_image_model() -> str:
    return os.getenv('GEMINI_IMAGE_MODEL') or DEFAULT_IMAGE_MODEL


def get_fal_api_key() -> str:
    return os.getenv('FAL_KEY', '')


def is_google_drive_configured() -> bool:
    """Drive export needs the token saved by setup_oauth.py."""
    from google_drive import TOKEN_PATH
    return os.path.exists(TOKEN_PATH)
