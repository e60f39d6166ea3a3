"""
Campaign Exporters
ZIP of rendered images, plain-text content sheets, and a PDF campaign report

The PDF is drawn page by page with Pillow and saved as one multi-page PDF.
"""
import io
import os
import re
import zipfile
from datetime import datetime
from typing import List, Optional, Tuple

from PIL import Image, ImageDraw, ImageFont

from logging_config import get_logger
from models import GeneratedData

logger = get_logger('exporters')

DEFAULT_CAMPAIGN = 'AI Content'
TEXT_FILE_NAME = 'social-media-content.txt'
MAX_NAME_LENGTH = 60

# Report page geometry (A4 at 150 DPI)
PAGE_SIZE = (1240, 1754)
PAGE_MARGIN = 120
PDF_RESOLUTION = 150.0

FONT_DIR = os.path.join(os.path.dirname(__file__), 'fonts')
FALLBACK_FONTS = {
    False: '/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf',
    True: '/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf',
}

TITLE_COLOR = (0, 100, 0)
MUTED_COLOR = (100, 100, 100)
SOCIAL_COLOR = (0, 100, 200)
DECK_COLOR = (150, 0, 150)
PLATFORM_COLOR = (50, 50, 50)
PROMPT_COLOR = (80, 80, 80)
VIDEO_COLOR = (0, 100, 100)
RULE_COLOR = (200, 200, 200)

_NON_NAME_CHARS = re.compile(r'[^a-z0-9\s-]', re.IGNORECASE)
_WHITESPACE = re.compile(r'\s+')


class ExportError(Exception):
    """Custom exception for export failures"""
    pass


def _slug(text: str) -> str:
    cleaned = _NON_NAME_CHARS.sub('', text).strip()
    return _WHITESPACE.sub('-', cleaned)[:MAX_NAME_LENGTH].lower()


def sanitize_filename(text: Optional[str], fallback: str) -> str:
    """
    Filename base from free text (usually the image prompt).

    Keeps letters, digits, spaces and dashes, joins words with '-', lowercases
    and cuts to 60 characters. Text shorter than 5 characters gives fallback.
    """
    if not text or len(text) < 5:
        return fallback
    return _slug(text) or fallback


def drive_file_base(prompt: Optional[str], label: str) -> str:
    """Drive upload name: slug of the prompt, or the label with dashes."""
    if prompt and len(prompt) > 5:
        slug = _slug(prompt)
        if slug:
            return slug
    return _WHITESPACE.sub('-', label)


def _campaign_prefix(campaign_name: Optional[str], name: str) -> str:
    campaign = (campaign_name or '').strip()
    return f'{campaign}-{name}' if campaign else name


def build_images_zip(data: GeneratedData, campaign_name: Optional[str] = None) -> bytes:
    """
    ZIP of every perspective's main image.

    Raises:
        ExportError: if there is nothing to export
    """
    if not data.perspectives:
        raise ExportError('No images to export')

    buffer = io.BytesIO()
    used_names = set()
    with zipfile.ZipFile(buffer, 'w', zipfile.ZIP_DEFLATED) as archive:
        for perspective in data.perspectives:
            image = perspective.main_image
            base = _campaign_prefix(campaign_name, sanitize_filename(perspective.prompt, image.label))
            filename = f'{base}.{image.ref.extension}'
            counter = 2
            while filename in used_names:
                filename = f'{base}-{counter}.{image.ref.extension}'
                counter += 1
            used_names.add(filename)
            archive.writestr(filename, image.data)

    logger.info(f"Built images ZIP: {len(used_names)} files, {buffer.tell() / 1024:.1f}KB")
    return buffer.getvalue()


def zip_filename(campaign_name: Optional[str]) -> str:
    return f"{campaign_name or 'generated'}-images.zip"


def pdf_filename(campaign_name: Optional[str]) -> str:
    return f"{campaign_name or 'generated'}-content-report.pdf"


def build_text_content(data: GeneratedData, campaign_name: str) -> str:
    """Content sheet uploaded next to the images in Drive."""
    rule = '=' * 20
    lines = [f'AI Generated Content for: {campaign_name}', '']
    lines += [rule, 'PERSPECTIVE PROMPTS & VISUAL DIRECTION', rule, '']

    for index, perspective in enumerate(data.perspectives, start=1):
        lines.append(f'Perspective {index}: {perspective.label}')
        lines.append(f'Image Prompt: {perspective.prompt}')
        if perspective.veo_prompt:
            lines.append(f'Veo Video Prompt: {perspective.veo_prompt}')
        description = perspective.main_image.description
        if description:
            lines.append(f'Description (EN): {description.en}')
            lines.append(f'Description (CN): {description.cn}')
        lines.append('')

    for platform, post in data.social_posts.items():
        lines += [rule, f'{platform.upper()} POST', rule, '', post, '', '']

    return '\n'.join(lines) + '\n'


def build_all_posts_text(data: GeneratedData, campaign_name: Optional[str] = None,
                         product_name: Optional[str] = None) -> str:
    """Every social post in one copy-paste block."""
    content = f'Campaign: {campaign_name or DEFAULT_CAMPAIGN}\n'
    if product_name:
        content += f'Product: {product_name}\n'
    content += '\n--- SOCIAL MEDIA POSTS ---\n\n'
    for platform, post in data.social_posts.items():
        if post:
            content += f'[{platform.upper()}]\n{post}\n\n'
    return content


def load_font(size: int, bold: bool = False):
    """Bundled font if present, then DejaVu, then Pillow's default."""
    candidates = [
        os.path.join(FONT_DIR, 'Report-Bold.ttf' if bold else 'Report-Regular.ttf'),
        FALLBACK_FONTS[bold],
    ]
    for path in candidates:
        if os.path.exists(path):
            return ImageFont.truetype(path, size)
    return ImageFont.load_default(size=size)


def wrap_text(text: str, font, max_width: int, draw: ImageDraw.ImageDraw) -> List[str]:
    """
    Wrap text to fit within max_width, keeping explicit line breaks.

    Words wider than a whole line are split by character.
    """
    lines = []
    for paragraph in text.split('\n'):
        words = paragraph.split()
        if not words:
            lines.append('')
            continue
        current = ''
        for word in words:
            candidate = f'{current} {word}' if current else word
            if draw.textlength(candidate, font=font) <= max_width:
                current = candidate
                continue
            if current:
                lines.append(current)
            current = ''
            for char in word:
                if current and draw.textlength(current + char, font=font) > max_width:
                    lines.append(current)
                    current = ''
                current += char
        if current:
            lines.append(current)
    return lines


class _ReportCanvas:
    """Top-to-bottom text layout across as many pages as needed."""

    def __init__(self):
        self.pages: List[Image.Image] = []
        self.width = PAGE_SIZE[0] - 2 * PAGE_MARGIN
        self._new_page()

    def _new_page(self):
        page = Image.new('RGB', PAGE_SIZE, 'white')
        self.pages.append(page)
        self.draw = ImageDraw.Draw(page)
        self.y = PAGE_MARGIN

    def _ensure_room(self, height: int):
        if self.y + height > PAGE_SIZE[1] - PAGE_MARGIN:
            self._new_page()

    def add_text(self, text: str, size: int = 20, bold: bool = False,
                 color: Tuple[int, int, int] = (0, 0, 0)):
        font = load_font(size, bold)
        line_height = int(size * 1.35)
        for line in wrap_text(text, font, self.width, self.draw):
            self._ensure_room(line_height)
            self.draw.text((PAGE_MARGIN, self.y), line, font=font, fill=color)
            self.y += line_height
        self.y += 10

    def add_space(self, height: int):
        self.y += height

    def add_rule(self):
        self._ensure_room(20)
        self.draw.line(
            [(PAGE_MARGIN, self.y), (PAGE_SIZE[0] - PAGE_MARGIN, self.y)],
            fill=RULE_COLOR, width=2
        )
        self.y += 20


def build_pdf_report(data: GeneratedData, campaign_name: Optional[str] = None,
                     product_name: Optional[str] = None) -> bytes:
    """
    Campaign report: title, product, social copy, then the shot list with
    visual prompts and video direction.
    """
    canvas = _ReportCanvas()
    canvas.add_text(f'CAMPAIGN REPORT: {campaign_name or DEFAULT_CAMPAIGN}', 36, True, TITLE_COLOR)
    canvas.add_text(f"Generated on: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}", 16, False, MUTED_COLOR)
    canvas.add_space(20)

    if product_name:
        canvas.add_text(f'Product: {product_name}', 28, True)
        canvas.add_space(10)

    if data.social_posts:
        canvas.add_rule()
        canvas.add_text('SOCIAL MEDIA DISTRIBUTION COPY', 28, True, SOCIAL_COLOR)
        canvas.add_space(10)
        for platform, post in data.social_posts.items():
            if post:
                canvas.add_text(platform.upper(), 22, True, PLATFORM_COLOR)
                canvas.add_text(post, 20)
                canvas.add_space(10)

    if data.perspectives:
        canvas.add_rule()
        canvas.add_text('VISUAL DECK & ARTISTIC DIRECTION', 28, True, DECK_COLOR)
        canvas.add_space(10)
        for index, perspective in enumerate(data.perspectives, start=1):
            canvas.add_text(f'Shot {index}: {perspective.label}', 22, True)
            canvas.add_text(f'Visual Prompt: {perspective.prompt}', 18, False, PROMPT_COLOR)
            if perspective.veo_prompt:
                canvas.add_text(f'Video Direction: {perspective.veo_prompt}', 18, False, VIDEO_COLOR)
            canvas.add_space(10)

    buffer = io.BytesIO()
    first, rest = canvas.pages[0], canvas.pages[1:]
    first.save(buffer, format='PDF', save_all=True, append_images=rest, resolution=PDF_RESOLUTION)
    logger.info(f"Built PDF report: {len(canvas.pages)} pages")
    return buffer.getvalue()
