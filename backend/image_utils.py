"""
Image Utilities
Loading uploads into ImageRefs and cropping focus areas with Pillow
"""
import io
from pathlib import Path
from typing import Optional

from PIL import Image

from models import FocusArea, ImageRef

MIME_TYPES = {
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.gif': 'image/gif',
    '.webp': 'image/webp',
}

ALLOWED_EXTENSIONS = set(MIME_TYPES.keys())


def get_image_mime_type(filename: str) -> str:
    """Get MIME type from image filename"""
    ext = Path(filename or '').suffix.lower()
    return MIME_TYPES.get(ext, 'image/jpeg')


def is_allowed_image(filename: str) -> bool:
    return Path(filename or '').suffix.lower() in ALLOWED_EXTENSIONS


def load_image_ref(source) -> ImageRef:
    """
    Build an ImageRef from an uploaded file (werkzeug FileStorage) or a path.

    The upload's declared content type wins over the extension.
    """
    if isinstance(source, (str, Path)):
        with open(source, 'rb') as f:
            data = f.read()
        return ImageRef(data=data, mime_type=get_image_mime_type(str(source)))

    data = source.read()
    mime_type = getattr(source, 'mimetype', None)
    if not mime_type or not mime_type.startswith('image/'):
        mime_type = get_image_mime_type(getattr(source, 'filename', '') or '')
    return ImageRef(data=data, mime_type=mime_type)


def image_size(image: ImageRef):
    with Image.open(io.BytesIO(image.data)) as img:
        return img.size


def crop_image(image: ImageRef, focus_area: Optional[FocusArea]) -> Optional[ImageRef]:
    """
    Crop the focus area (source-image pixels) out of an image as PNG.

    The box is clamped to the image bounds; an empty box gives None.
    """
    if focus_area is None:
        return None

    with Image.open(io.BytesIO(image.data)) as img:
        width, height = img.size
        left = max(0, min(int(round(focus_area.x)), width))
        top = max(0, min(int(round(focus_area.y)), height))
        right = max(left, min(int(round(focus_area.x + focus_area.width)), width))
        bottom = max(top, min(int(round(focus_area.y + focus_area.height)), height))
        if right - left < 1 or bottom - top < 1:
            return None

        cropped = img.crop((left, top, right, bottom))
        if cropped.mode not in ('RGB', 'RGBA'):
            cropped = cropped.convert('RGBA')
        buffer = io.BytesIO()
        cropped.save(buffer, format='PNG')

    return ImageRef(data=buffer.getvalue(), mime_type='image/png')
