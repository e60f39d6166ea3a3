"""
Gemini Service - Content Generation Pipeline
brainstorm -> prompt crafting -> sequential image rendering -> per-image copy

All image renders go through the shared rate limiter with retry, and every
render asks the model for a bilingual caption next to the image.
"""
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from google import genai
from google.genai import types

import settings
from catalog import (
    EXTEND_FRAME_PROMPTS, SOCIAL_PLATFORMS, calculate_closest_aspect_ratio,
    expand_angles, perspective_label, strategy_prompts, style_filter_prompt,
)
from logging_config import get_logger, get_request_logger
from models import (
    CustomLifestyle, Description, GeneratedData, GeneratedImage,
    GeneratedPerspective, GenerationOptions, ImageRef, ProductInfo,
)
from rate_limiter import call_with_limits
from response_parsing import (
    MISSING_VALUE, coerce_string, coerce_string_list, extract_json_object,
    parse_description,
)

logger = get_logger('gemini')

REQUEST_TIMEOUT = 120   # seconds per API call
IMAGE_SIZE = '1K'

DESCRIPTION_INSTRUCTION = (
    '\n\nFinally, provide a short one-sentence descriptive caption in both English and Chinese. '
    'Format as JSON: {"en": "...", "cn": "..."}.'
)

SAFETY_BLOCK_MESSAGE = 'Image was blocked by safety filters. Try a different angle or less suggestive prompt.'

EXPANSION_COUNT = 2
VARIATION_COUNT = 3

SOCIAL_COPY_SCHEMA = {
    'type': 'OBJECT',
    'properties': {
        'english_post': {'type': 'STRING'},
        'chinese_post': {'type': 'STRING'},
    },
    'required': ['english_post', 'chinese_post'],
}

PERSPECTIVES_SCHEMA = {
    'type': 'OBJECT',
    'properties': {
        'perspectives': {
            'type': 'ARRAY',
            'items': {
                'type': 'OBJECT',
                'properties': {
                    'imagePrompt': {'type': 'STRING'},
                    'veoPrompt': {'type': 'STRING'},
                },
            },
        },
    },
}

ANGLES_SCHEMA = {
    'type': 'OBJECT',
    'properties': {'angles': {'type': 'ARRAY', 'items': {'type': 'STRING'}}},
}

TRANSITION_SCHEMA = {
    'type': 'OBJECT',
    'properties': {'en': {'type': 'STRING'}, 'cn': {'type': 'STRING'}},
}

UGC_INSTRUCTION = """
    *** SPECIAL STYLE MODE: LO-FI AUTHENTICITY (UGC) ***
    The user wants to evoke "Digital Imperfection" to build trust, but implies different types of authenticity.
    DO NOT simply apply a "bad quality" filter to everything.

    Generate a variety of authentic "snapshot" styles across the different angles:

    1. "The Party Flash": Hard direct flash, high contrast, dark background (snapshot aesthetic).
    2. "The Daylight Casual": Soft, slightly blown-out window light, messy real-life background (lifestyle vlog aesthetic).
    3. "The Textural Crop": High ISO, visible grain/noise, focus on product texture, slightly soft focus (artsy amateur aesthetic).
    4. "The Quick Snap": Slightly off-center composition, motion blur on background elements, uncurated environment (candid aesthetic).

    General rules for this mode:
    - Avoid "studio perfection", "perfect bokeh", or "artificial softbox lighting".
    - Use "shot on iPhone", "posted on Snapchat", "raw photo", "no filter" as style guides.
    - Ensure the product remains the clear focus, even if the vibe is "messy".
"""

UGC_REMINDER = (
    'Ensure every single prompt adheres to the Lo-Fi/UGC aesthetic instructions above, '
    'varying the specific type of authenticity (flash vs daylight vs texture).'
)

# Progress callback: (step, message, progress 0-100) -> None
ProgressCallback = Callable[[str, str, int], None]


class GeminiServiceError(Exception):
    """Custom exception for Gemini API errors"""
    pass


@dataclass
class CreativePrompt:
    """Image and motion prompt crafted for one rendered angle."""
    image_prompt: str
    veo_prompt: str
    angle_id: str
    variation_index: int


def _get_client(timeout: int = REQUEST_TIMEOUT):
    """
    Initialize and return Gemini client with timeout configuration.

    Reads the key and optional custom endpoint on every call so keys updated
    through the admin API apply immediately.
    """
    api_key = settings.get_gemini_api_key()
    if not api_key:
        raise GeminiServiceError('GEMINI_API_KEY environment variable not set')
    http_options = {'timeout': timeout * 1000}
    endpoint = settings.get_gemini_endpoint()
    if endpoint:
        http_options['base_url'] = endpoint
    return genai.Client(api_key=api_key, http_options=http_options)


def _image_part(image: ImageRef):
    return types.Part.from_bytes(data=image.data, mime_type=image.mime_type)


def _get_parts(response) -> list:
    """Parts of the first candidate, or [] when the response is empty/blocked."""
    candidates = getattr(response, 'candidates', None) or []
    if not candidates:
        return []
    content = getattr(candidates[0], 'content', None)
    return list(getattr(content, 'parts', None) or [])


def _finish_reason(response) -> str:
    candidates = getattr(response, 'candidates', None) or []
    reason = getattr(candidates[0], 'finish_reason', None) if candidates else None
    if reason is None:
        return 'UNKNOWN'
    return str(getattr(reason, 'value', reason))


def _extract_image(response, label: str) -> Optional[GeneratedImage]:
    """First inline image of a render response, with its parsed caption."""
    parts = _get_parts(response)
    image_part = next((p for p in parts if getattr(p, 'inline_data', None)), None)
    if image_part is None or not image_part.inline_data.data:
        return None
    text_part = next((p for p in parts if getattr(p, 'text', None)), None)
    return GeneratedImage(
        data=image_part.inline_data.data,
        mime_type=image_part.inline_data.mime_type or 'image/png',
        label=label,
        description=parse_description(text_part.text if text_part else None),
    )


def _render(client, contents: list, aspect_ratio: str = '1:1', log=None):
    """One image-model call through the shared limiter, retried on overload."""
    return call_with_limits(
        lambda: client.models.generate_content(
            model=settings.get_image_model(),
            contents=contents,
            config=types.GenerateContentConfig(
                response_modalities=['image', 'text'],
                image_config=types.ImageConfig(
                    aspect_ratio=aspect_ratio,
                    image_size=IMAGE_SIZE
                )
            )
        ),
        log=log
    )


def _generate_json(client, contents: list, schema: Optional[dict] = None, log=None) -> dict:
    """Text-model call constrained to JSON; returns the parsed object."""
    config = types.GenerateContentConfig(
        response_mime_type='application/json',
        response_schema=schema
    )
    response = call_with_limits(
        lambda: client.models.generate_content(
            model=settings.get_text_model(),
            contents=contents,
            config=config
        ),
        log=log
    )
    return extract_json_object(response.text)


def _timestamp_ms() -> int:
    return int(time.time() * 1000)


def _notify(progress_callback: Optional[ProgressCallback], step: str, message: str, progress: int):
    if progress_callback:
        progress_callback(step, message, progress)


def generate_brainstorm_angles(main_image: ImageRef, product_info: ProductInfo) -> List[str]:
    """Ask the text model for three creative camera-angle ideas."""
    client = _get_client()
    prompt = (
        f'Analyze product: {product_info.name}. Suggest 3 creative high-impact camera angles. '
        'JSON: { "angles": ["Idea 1", "..."] }'
    )
    try:
        parsed = _generate_json(client, [_image_part(main_image), prompt], ANGLES_SCHEMA)
    except ValueError as e:
        raise GeminiServiceError(f'Brainstorm failed: {e}')
    angles = coerce_string_list(parsed.get('angles'))
    logger.info(f"Brainstormed {len(angles)} angles for '{product_info.name}'")
    return angles


def analyze_image(image: ImageRef) -> str:
    """Free-text visual analysis of one image."""
    client = _get_client()
    response = call_with_limits(
        lambda: client.models.generate_content(
            model=settings.get_text_model(),
            contents=[
                _image_part(image),
                'Detailed visual analysis covering composition, lighting, color, subject, and atmosphere.'
            ]
        )
    )
    return response.text or ''


def generate_social_posts(
    image_parts: list,
    product_info: ProductInfo,
    options: GenerationOptions,
    description: str,
    log=None
) -> Dict[str, str]:
    """
    Platform posts for the selected platforms only.

    Never raises: any failure is logged and gives an empty dict, so the
    pipeline can continue without posts.
    """
    log = log or logger
    platforms = [p.lower() for p in options.selected_social_platforms]
    properties = {
        key: {'type': 'STRING', 'description': SOCIAL_PLATFORMS[key]}
        for key in platforms if key in SOCIAL_PLATFORMS
    }
    if not properties:
        return {}

    strategies = strategy_prompts(options.selected_social_strategies)
    strategy_instruction = f"Tone/Strategy: {', '.join(strategies)}" if strategies else ''
    prompt = (
        f"Social Manager Persona. Copy for: {', '.join(options.selected_social_platforms)}. "
        f"Product: {product_info.name}. {strategy_instruction}. Goal: {description}"
    )

    try:
        client = _get_client()
        parsed = _generate_json(
            client,
            list(image_parts) + [prompt],
            {'type': 'OBJECT', 'properties': properties},
            log=log
        )
    except Exception as e:
        log.warning(f"Social posts generation failed, continuing without posts: {e}")
        return {}

    posts = {}
    for key in platforms:
        value = parsed.get(key)
        if value:
            posts[key] = coerce_string(value)
    log.info(f"Generated social posts for {list(posts.keys())}")
    return posts


def _video_direction(options: GenerationOptions) -> str:
    config = options.video_prompt_config
    if config is None or config.is_empty():
        return ''
    fields = [
        ('Scene', config.scene),
        ('Action', config.action),
        ('Style', config.style),
        ('Camera Movement', config.camera_movement),
        ('Composition', config.composition),
        ('Atmosphere', config.atmosphere),
    ]
    direction = '. '.join(f'{name}: {value}' for name, value in fields if value)
    return f'Video Direction (apply to every veoPrompt): {direction}.'


def build_creative_prompt(
    expanded_angles: List[dict],
    product_info: ProductInfo,
    description: str,
    options: GenerationOptions,
    custom_lifestyle: CustomLifestyle
) -> str:
    """Visual director prompt asking for one image + motion prompt per angle."""
    atmosphere = ', '.join(
        a for a in list(options.lifestyle_scene.atmosphere) + [custom_lifestyle.atmosphere] if a
    )
    strategies = strategy_prompts(options.selected_social_strategies)
    strategy_context = '\n'.join(strategies) if strategies else 'Standard professional.'
    focus_context = ', '.join(options.selected_focus_subjects) if options.selected_focus_subjects else 'Whole Product'
    angles_text = '\n'.join(a['angle'] for a in expanded_angles)

    return f"""Visual Director Persona.
    Product: {product_info.name}.
    User Goal: {description}.
    Atmosphere: {atmosphere}.
    Style: {style_filter_prompt(options.style_filter)}.

    {UGC_INSTRUCTION if options.ugc_mode else ''}

    Strategy: {strategy_context}.
    Creativity: {'High' if options.creativity_boost else 'Standard'}.
    Consistency: {'Strict' if options.consistency_mode else 'Off'}.
    Sensual: {'High-end boudoir' if options.sensual_mode else 'Off'}.
    Target Region: {options.target_region or 'Global'}.
    Target Audience: {options.target_audience or 'General'}.
    Emphasis/Focus Details: {focus_context}.
    {_video_direction(options)}

    Write rich prompts for each angle below. Ensure the "Emphasis/Focus Details" are highlighted in the prompt for every angle if applicable.
    {UGC_REMINDER if options.ugc_mode else ''}

    Output JSON: {{ "perspectives": [ {{ "imagePrompt": "...", "veoPrompt": "..." }} ] }}
    Angles: {angles_text}"""


def _fallback_prompt(product_info: ProductInfo, angle: dict) -> CreativePrompt:
    return CreativePrompt(
        image_prompt=f"Pro shot of {product_info.name}, {angle['angle']}.",
        veo_prompt=f"Cinematic video of {angle['angle']}.",
        angle_id=angle['id'],
        variation_index=angle['index'],
    )


def generate_creative_image_prompts(
    image_parts: list,
    expanded_angles: List[dict],
    product_info: ProductInfo,
    description: str,
    options: GenerationOptions,
    custom_lifestyle: CustomLifestyle,
    log=None
) -> List[CreativePrompt]:
    """
    One CreativePrompt per expanded angle, in order.

    A reply with fewer entries than angles is padded with fallback prompts;
    extra entries are dropped.

    Raises:
        GeminiServiceError: if the model call fails or returns no usable JSON
    """
    log = log or logger
    prompt = build_creative_prompt(expanded_angles, product_info, description, options, custom_lifestyle)
    try:
        client = _get_client()
        parsed = _generate_json(client, list(image_parts) + [prompt], PERSPECTIVES_SCHEMA, log=log)
    except GeminiServiceError:
        raise
    except Exception as e:
        raise GeminiServiceError(f'Prompt crafting failed: {e}')

    raw = parsed.get('perspectives')
    if not isinstance(raw, list):
        raise GeminiServiceError('Missing perspectives in prompt response')
    if len(raw) != len(expanded_angles):
        log.warning(f"Prompt count mismatch: expected {len(expanded_angles)}, got {len(raw)}")

    prompts = []
    for i, angle in enumerate(expanded_angles):
        entry = raw[i] if i < len(raw) and isinstance(raw[i], dict) else None
        fallback = _fallback_prompt(product_info, angle)
        if entry is None:
            prompts.append(fallback)
            continue
        prompts.append(CreativePrompt(
            image_prompt=coerce_string(entry.get('imagePrompt'), fallback.image_prompt),
            veo_prompt=coerce_string(entry.get('veoPrompt'), fallback.veo_prompt),
            angle_id=angle['id'],
            variation_index=angle['index'],
        ))
    return prompts


def generate_social_copy_for_image(image: ImageRef, product_info: ProductInfo) -> Description:
    """Bilingual post written for one rendered image."""
    client = _get_client()
    prompt = (
        f'Expert copywriter persona. Analyze image for product: {product_info.name}. '
        'Create engaging post. Output JSON: {"english_post": "...", "chinese_post": "..."}'
    )
    parsed = _generate_json(client, [_image_part(image), prompt], SOCIAL_COPY_SCHEMA)
    return Description(
        en=coerce_string(parsed.get('english_post'), MISSING_VALUE),
        cn=coerce_string(parsed.get('chinese_post'), MISSING_VALUE),
    )


def _attach_social_copy(perspective: GeneratedPerspective, product_info: ProductInfo, log):
    try:
        perspective.social_copy = generate_social_copy_for_image(perspective.main_image.ref, product_info)
    except Exception as e:
        log.warning(f"Social copy failed for {perspective.label}: {e}")


def generate_content_from_image(
    main_image: ImageRef,
    secondary_images: List[ImageRef],
    focus_image: Optional[ImageRef],
    reference_images: List[ImageRef],
    product_info: ProductInfo,
    options: GenerationOptions,
    custom_lifestyle: CustomLifestyle,
    description: str,
    progress_callback: Optional[ProgressCallback] = None,
    request_id: Optional[str] = None
) -> GeneratedData:
    """
    Full generation run.

    Stages:
        1. Social posts for the selected platforms (failure -> no posts)
        2. Creative prompts per angle (failure -> fallback prompts)
        3. Sequential image rendering through the rate limiter
        4. Optional per-image social copy (failure -> no copy)

    Raises:
        GeminiServiceError: if an image render still fails after retries
    """
    log = get_request_logger('gemini', request_id) if request_id else logger
    start_time = time.time()

    _notify(progress_callback, 'analyzing', 'Analysing images & creative direction...', 5)
    client = _get_client()
    main_part = _image_part(main_image)
    secondary_parts = [_image_part(img) for img in secondary_images]
    reference_parts = [_image_part(img) for img in reference_images]
    all_image_parts = [main_part] + secondary_parts + reference_parts
    target_aspect_ratio = calculate_closest_aspect_ratio(options.aspect_ratio or '1:1', options.custom_dimensions)

    _notify(progress_callback, 'social', 'Crafting social strategy & copy...', 10)
    social_posts = generate_social_posts(all_image_parts, product_info, options, description, log=log)

    _notify(progress_callback, 'prompts', 'Designing perspectives...', 20)
    expanded = expand_angles(options.selected_angles, options.images_per_angle)
    try:
        creative_prompts = generate_creative_image_prompts(
            [main_part] + reference_parts, expanded, product_info, description, options, custom_lifestyle, log=log
        )
    except GeminiServiceError as e:
        log.warning(f"Using fallback prompts: {e}")
        creative_prompts = [_fallback_prompt(product_info, angle) for angle in expanded]

    render_parts = list(all_image_parts)
    if focus_image is not None:
        render_parts.append(_image_part(focus_image))

    perspectives = []
    total = len(creative_prompts)
    for i, creative in enumerate(creative_prompts):
        _notify(
            progress_callback, 'rendering',
            f'Rendering images ({i + 1}/{total})...',
            30 + int(60 * i / max(total, 1))
        )
        contents = render_parts + [f'Generate image: "{creative.image_prompt}". {DESCRIPTION_INSTRUCTION}']
        try:
            response = _render(client, contents, target_aspect_ratio, log=log)
        except Exception as e:
            log.error(f"Render failed for {creative.angle_id} #{creative.variation_index}: {e}", exc_info=True)
            raise GeminiServiceError(f'Image generation failed: {e}')

        label = perspective_label(creative.angle_id)
        if options.images_per_angle > 1:
            label = f'{label} #{creative.variation_index}'
        image = _extract_image(response, label)
        if image is None:
            log.warning(f"No image returned for {label} (reason: {_finish_reason(response)}), skipping")
            continue

        perspective = GeneratedPerspective(
            id=f'{creative.angle_id}-{creative.variation_index}-{_timestamp_ms()}',
            label=label,
            prompt=creative.image_prompt,
            veo_prompt=creative.veo_prompt,
            main_image=image,
        )
        if options.generate_social_copy:
            _attach_social_copy(perspective, product_info, log)
        perspectives.append(perspective)

    elapsed = time.time() - start_time
    log.info(f"Generation complete in {elapsed:.1f}s: {len(perspectives)}/{total} images, {len(social_posts)} posts")
    _notify(progress_callback, 'complete', 'Generation complete', 100)
    return GeneratedData(social_posts=social_posts, perspectives=perspectives)


def generate_single_image(
    prompt: str,
    main_image: ImageRef,
    secondary_images: List[ImageRef],
    focus_image: Optional[ImageRef],
    reference_images: List[ImageRef],
    aspect_ratio: str = '1:1',
    custom_dimensions: Optional[dict] = None
) -> GeneratedImage:
    """Re-render one perspective from its prompt."""
    client = _get_client()
    contents = [_image_part(main_image)]
    contents += [_image_part(img) for img in secondary_images]
    contents += [_image_part(img) for img in reference_images]
    if focus_image is not None:
        contents.append(_image_part(focus_image))
    contents.append(prompt + DESCRIPTION_INSTRUCTION)

    target_aspect_ratio = calculate_closest_aspect_ratio(aspect_ratio or '1:1', custom_dimensions)
    response = _render(client, contents, target_aspect_ratio)
    image = _extract_image(response, 'Regenerated')
    if image is not None:
        return image

    reason = _finish_reason(response)
    if reason == 'SAFETY':
        raise GeminiServiceError(SAFETY_BLOCK_MESSAGE)
    raise GeminiServiceError(f'Image regeneration failed. (Reason: {reason})')


def generate_more_images(
    main_image: ImageRef,
    secondary_images: List[ImageRef],
    focus_image: Optional[ImageRef],
    reference_images: List[ImageRef],
    product_info: ProductInfo,
    options: GenerationOptions,
    existing_perspectives: List[GeneratedPerspective],
    expansion_prompt: str,
    progress_callback: Optional[ProgressCallback] = None,
    request_id: Optional[str] = None
) -> List[GeneratedPerspective]:
    """Continue the shoot: two new perspectives guided by the existing images."""
    log = get_request_logger('gemini', request_id) if request_id else logger
    client = _get_client()
    _notify(progress_callback, 'expanding', 'Creating new creative angles...', 10)

    target_aspect_ratio = calculate_closest_aspect_ratio(options.aspect_ratio or '1:1', options.custom_dimensions)
    base_prompt = f'Continuing photoshoot for {product_info.name}. Goal: "{expansion_prompt}".'

    reference_parts = [_image_part(main_image)]
    reference_parts += [_image_part(img) for img in secondary_images]
    reference_parts += [_image_part(img) for img in reference_images]
    reference_parts += [_image_part(p.main_image.ref) for p in existing_perspectives]
    if focus_image is not None:
        reference_parts.append(_image_part(focus_image))

    new_perspectives = []
    for num in range(1, EXPANSION_COUNT + 1):
        _notify(progress_callback, 'rendering', f'Rendering expanded images ({num}/{EXPANSION_COUNT})...',
                10 + 40 * num)
        response = _render(client, reference_parts + [base_prompt + '\n' + DESCRIPTION_INSTRUCTION],
                           target_aspect_ratio, log=log)
        image = _extract_image(response, 'Expansion')
        if image is None:
            log.warning(f"No image returned for expansion {num} (reason: {_finish_reason(response)})")
            continue
        perspective = GeneratedPerspective(
            id=f'expansion-{_timestamp_ms()}-{num}',
            label=f'{expansion_prompt[:15]}... ({num})',
            prompt=base_prompt,
            veo_prompt='Cinematic video.',
            main_image=image,
        )
        if options.generate_social_copy:
            _attach_social_copy(perspective, product_info, log)
        new_perspectives.append(perspective)

    log.info(f"Expansion produced {len(new_perspectives)} perspectives")
    return new_perspectives


def edit_image(original: ImageRef, mask: ImageRef, prompt: str) -> ImageRef:
    """Inpaint the masked area of an image."""
    client = _get_client()
    contents = [
        _image_part(original),
        types.Part.from_bytes(data=mask.data, mime_type='image/png'),
        f'Edit masked area: "{prompt}". {DESCRIPTION_INSTRUCTION}',
    ]
    image = _extract_image(_render(client, contents), 'Edited')
    if image is None:
        raise GeminiServiceError('Image editing failed.')
    return image.ref


def refine_image(original: ImageRef, refine_prompt: str) -> GeneratedImage:
    client = _get_client()
    contents = [_image_part(original), f'Refine image: "{refine_prompt}". {DESCRIPTION_INSTRUCTION}']
    image = _extract_image(_render(client, contents), 'Refined')
    if image is None:
        raise GeminiServiceError('Image refinement failed.')
    return image


def generate_image_variations(original: ImageRef) -> List[GeneratedImage]:
    """Up to three variations; renders without an image are dropped."""
    client = _get_client()
    variations = []
    for _ in range(VARIATION_COUNT):
        response = _render(client, [_image_part(original), f'Generate variation. {DESCRIPTION_INSTRUCTION}'])
        image = _extract_image(response, 'Variation')
        if image is not None:
            variations.append(image)
    return variations


def extend_frame_for_video(original: ImageRef) -> Tuple[List[GeneratedImage], Description]:
    """
    Outpainted frames for camera moves plus a bilingual transition caption.

    Raises:
        GeminiServiceError: if any frame comes back without an image
    """
    client = _get_client()
    image_part = _image_part(original)

    frames = []
    for frame_prompt, frame_label in EXTEND_FRAME_PROMPTS:
        response = _render(client, [image_part, frame_prompt + DESCRIPTION_INSTRUCTION])
        image = _extract_image(response, frame_label)
        if image is None:
            raise GeminiServiceError(f'Frame extension failed: {frame_label} (Reason: {_finish_reason(response)})')
        frames.append(image)

    try:
        parsed = _generate_json(client, [image_part, 'JSON: {en, cn} transition text.'], TRANSITION_SCHEMA)
    except ValueError as e:
        raise GeminiServiceError(f'Transition text failed: {e}')
    transition = Description(
        en=coerce_string(parsed.get('en'), MISSING_VALUE),
        cn=coerce_string(parsed.get('cn'), MISSING_VALUE),
    )
    return frames, transition
