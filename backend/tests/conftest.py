"""
Shared pytest fixtures for Rare Visual Catalyst tests.
"""
import os
import sys
import json
import shutil
import tempfile
from io import BytesIO
from types import SimpleNamespace

import pytest
from PIL import Image

# Add backend directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Isolate files written at import time (database, logs, .env)
_TEST_ROOT = tempfile.mkdtemp(prefix='catalyst-tests-')
os.environ['DATABASE_PATH'] = os.path.join(_TEST_ROOT, 'catalyst.db')
os.environ['LOG_DIR'] = os.path.join(_TEST_ROOT, 'logs')
os.environ['ENV_FILE'] = os.path.join(_TEST_ROOT, '.env')
os.environ['DRIVE_TOKEN_PATH'] = os.path.join(_TEST_ROOT, 'credentials', 'oauth_token.pickle')
os.environ['ADMIN_PASSWORD'] = 'test_password_123'
os.environ['TESTING'] = 'true'

TEXT_MODEL = 'test-text-model'
IMAGE_MODEL = 'test-image-model'


def pytest_sessionfinish(session, exitstatus):
    shutil.rmtree(_TEST_ROOT, ignore_errors=True)


def make_png(color='blue', size=(64, 48)) -> bytes:
    img = Image.new('RGB', size, color=color)
    img_bytes = BytesIO()
    img.save(img_bytes, format='PNG')
    return img_bytes.getvalue()


@pytest.fixture(scope='session')
def app():
    """Create Flask application for testing."""
    from app import app as flask_app
    flask_app.config['TESTING'] = True

    yield flask_app


@pytest.fixture
def client(app):
    """Create Flask test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def test_db():
    """Create isolated test database."""
    temp_db = tempfile.NamedTemporaryFile(suffix='.db', delete=False)
    temp_db.close()

    original_db = os.environ.get('DATABASE_PATH')
    os.environ['DATABASE_PATH'] = temp_db.name

    from database import init_db
    init_db()

    yield temp_db.name

    if original_db:
        os.environ['DATABASE_PATH'] = original_db
    else:
        os.environ.pop('DATABASE_PATH', None)

    try:
        os.unlink(temp_db.name)
    except OSError:
        pass


@pytest.fixture(autouse=True)
def clear_sessions():
    """Every test starts with an empty session store."""
    from session_store import sessions
    sessions.clear()
    yield
    sessions.clear()


@pytest.fixture(autouse=True)
def fast_rate_limiter(monkeypatch):
    """Shared limiter without spacing, and retries without sleeping."""
    import rate_limiter
    monkeypatch.setattr(rate_limiter, '_global_rate_limiter', rate_limiter.RateLimiter(rpm=600000))
    monkeypatch.setattr(rate_limiter.time, 'sleep', lambda seconds: None)


@pytest.fixture
def sample_png():
    """PNG bytes of a small solid image."""
    return make_png()


@pytest.fixture
def sample_image_ref(sample_png):
    from models import ImageRef
    return ImageRef(data=sample_png, mime_type='image/png')


@pytest.fixture
def sample_image():
    """Create a sample upload stream."""
    return BytesIO(make_png('red', (200, 100)))


@pytest.fixture
def sample_image_file(tmp_path):
    """Create a sample test image file on disk."""
    img_path = tmp_path / "test_image.png"
    Image.new('RGB', (120, 80), color='red').save(str(img_path))
    return str(img_path)


@pytest.fixture
def generated_data():
    """GeneratedData with two perspectives and two social posts."""
    from models import Description, GeneratedData, GeneratedImage, GeneratedPerspective

    def perspective(pid, label, color, prompt):
        return GeneratedPerspective(
            id=pid,
            label=label,
            prompt=prompt,
            veo_prompt=f'Slow dolly in on the {label.lower()}.',
            main_image=GeneratedImage(
                data=make_png(color), mime_type='image/png', label=label,
                description=Description(en=f'{label} caption', cn='标题'),
            ),
        )

    return GeneratedData(
        social_posts={'instagram': 'Glow all day #skincare', 'tiktok': 'POV: your new favourite serum'},
        perspectives=[
            perspective('wideShot-1-1700000000000', 'Wide Shot', 'green', 'Serum bottle on marble, morning light'),
            perspective('closeUp-1-1700000000001', 'Close-up', 'yellow', 'Macro of the dropper tip'),
        ],
    )


@pytest.fixture
def admin_token(client):
    """Get admin authentication token."""
    response = client.post('/api/admin/login', json={
        'password': 'test_password_123'
    })
    if response.status_code == 200:
        return response.get_json().get('token')
    return None


# Fake Gemini client

def image_response(data=None, mime_type='image/png', caption='{"en": "A caption", "cn": "标题"}',
                   finish_reason='STOP'):
    """Render response with one inline image and a caption text part."""
    parts = [SimpleNamespace(inline_data=SimpleNamespace(data=data or make_png('purple'), mime_type=mime_type),
                             text=None)]
    if caption is not None:
        parts.append(SimpleNamespace(inline_data=None, text=caption))
    candidate = SimpleNamespace(content=SimpleNamespace(parts=parts),
                                finish_reason=SimpleNamespace(value=finish_reason))
    return SimpleNamespace(candidates=[candidate], text=caption)


def empty_response(finish_reason='SAFETY'):
    """Render response without an image (blocked or refused)."""
    candidate = SimpleNamespace(content=SimpleNamespace(parts=[]),
                                finish_reason=SimpleNamespace(value=finish_reason))
    return SimpleNamespace(candidates=[candidate], text=None)


def text_response(payload):
    """Text-model response; dicts are serialized as JSON."""
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return SimpleNamespace(candidates=[], text=text)


class FakeGenai:
    """
    Stand-in for genai.Client.

    Replies are queued per model kind ('text' / 'image'); an Exception in the
    queue is raised instead of returned. When a queue is empty, image calls
    return a default image and text calls return '{}'.
    """

    image_response = staticmethod(image_response)
    empty_response = staticmethod(empty_response)
    text_response = staticmethod(text_response)

    def __init__(self):
        self.text_replies = []
        self.image_replies = []
        self.calls = []
        self.client_kwargs = []
        self.models = SimpleNamespace(generate_content=self._generate_content)

    def __call__(self, **kwargs):
        self.client_kwargs.append(kwargs)
        return self

    def calls_for(self, kind):
        model = IMAGE_MODEL if kind == 'image' else TEXT_MODEL
        return [c for c in self.calls if c['model'] == model]

    def _generate_content(self, model, contents, config=None):
        self.calls.append({'model': model, 'contents': contents, 'config': config})
        queue = self.image_replies if model == IMAGE_MODEL else self.text_replies
        if queue:
            reply = queue.pop(0)
        elif model == IMAGE_MODEL:
            reply = image_response()
        else:
            reply = text_response({})
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def fake_genai(monkeypatch):
    """Patch the Gemini client factory with a FakeGenai."""
    import gemini_service
    fake = FakeGenai()
    monkeypatch.setenv('GEMINI_API_KEY', 'test-key')
    monkeypatch.delenv('GEMINI_ENDPOINT', raising=False)
    monkeypatch.setenv('GEMINI_TEXT_MODEL', TEXT_MODEL)
    monkeypatch.setenv('GEMINI_IMAGE_MODEL', IMAGE_MODEL)
    monkeypatch.setattr(gemini_service.genai, 'Client', fake)
    return fake


@pytest.fixture
def inline_background(monkeypatch):
    """Run app background jobs synchronously."""
    import app as app_module

    def run_now(target, *args):
        target(*args)

    monkeypatch.setattr(app_module, '_start_background', run_now)
