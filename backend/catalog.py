"""
Creative Catalog

Vocabularies offered to the user (shot angles, style filters, social
strategies, platforms, lifestyle and video direction options) and the
prompt fragments they map to.
"""
from typing import Dict, List, Optional, Tuple

# Hard cap on images produced by a single generation run
MAX_TOTAL_IMAGES = 32

CUSTOM_ANGLE_PREFIX = 'custom:'

# Angle id -> display label used on generated perspectives
PERSPECTIVE_LABELS: Dict[str, str] = {
    'extremeWideShot': 'Extreme Wide Shot',
    'mediumCloseUp': 'Medium Close-up',
    'pov': 'POV',
    'birdsEyeView': "Bird's Eye View",
    'wormsEyeView': "Worm's Eye View",
    'trackingShot': 'Tracking Shot',
    'closeUp': 'Close-up',
    'nearView': 'Near View',
    'midView': 'Mid View',
    'farView': 'Far View',
    'heroShot': 'Hero Shot',
    'knolling': 'Knolling',
    'dutchAngle': 'Dutch Angle',
    'overShoulder': 'Over-the-Shoulder',
    'frontView': 'Front View',
    'topDown': 'Top-down',
    'lowAngle': 'Low-Angle Shot',
    'sideView': 'Side View',
    'upperBody': 'Upper Body',
    'lowerBody': 'Lower Body',
    'product_frontView': 'Product: Front View',
    'product_threeQuarterLeft': 'Product: Three-Quarter Left',
    'product_threeQuarterRight': 'Product: Three-Quarter Right',
    'product_profileLeft': 'Product: Profile Left',
    'product_profileRight': 'Product: Profile Right',
    'product_backView': 'Product: Back View',
    'product_topDown': 'Product: Top-Down',
    'product_bottomUp': 'Product: Bottom-Up',
    'product_45degreeAbove': 'Product: 45° Above',
    'product_macroShot': 'Product: Macro Shot',
}

# Angles offered in the "Shot Size & Angle" group
SHOT_ANGLES = [
    'extremeWideShot', 'farView', 'midView', 'mediumCloseUp', 'closeUp', 'pov',
    'heroShot', 'knolling', 'dutchAngle', 'overShoulder', 'birdsEyeView',
    'wormsEyeView', 'trackingShot', 'lowAngle',
]

# Angles offered in the "Product Studio" (white background) group
PRODUCT_STUDIO_ANGLES = [
    'product_frontView', 'product_threeQuarterLeft', 'product_threeQuarterRight',
    'product_profileLeft', 'product_topDown', 'product_macroShot',
]

FOCUS_SUBJECTS = ['fullBody', 'hand', 'fingers', 'feet', 'upperBody', 'lowerBody']

STYLE_FILTERS: Dict[str, str] = {
    'fuji_classic_chrome': "Fuji Classic Chrome: Subdued colors, high contrast, documentary feel.",
    'fuji_classic_negative': "Fuji Classic Negative: Nostalgic, muted but rich colors.",
    'fuji_provia_velvia': "Fuji Provia / Velvia: Vibrant colors, cinematic atmosphere.",
    'fuji_acros': "Fuji Acros: High-contrast monochrome, fine grain.",
    'kodak_portra_400': "Kodak Portra: Warm skin tones, professional film look.",
    'kodak_gold_200': "Kodak Gold 200: Warm nostalgic vintage vibe.",
    'kodak_kodachrome': "Kodachrome: Saturated colors, legendary 70s look.",
    'leica_look': "Leica Look: High dynamic range, sharp, European aesthetic.",
    'cinematic_teal_orange': "Teal & Orange: Blockbuster movie grade.",
    'cinematic_wes_anderson': "Wes Anderson: Symmetrical, pastel, whimsical.",
    'cinematic_cyberpunk': "Cyberpunk: Neon blues and purples, noir.",
    'social_vsco': "VSCO A4/A6: Clean, faded highlights, trendy minimalist.",
    'social_huji': "Huji Cam: 90s disposable look, light leaks.",
    'social_gingham': "Gingham: Soft washed-out look, warm haze.",
    'moody_dark': "Moody Dark: Low saturation, deep shadows.",
    'soft_pastel': "Soft Pastel: Clean bright tones, ethereal.",
    'street_gritty': "Street Gritty: Cool tones, raw authentic texture.",
    'bw_ilford_hp5': "Ilford HP5: Classic photojournalism monochrome.",
    'bw_tri_x': "Kodak Tri-X: High contrast gritty grain.",
    'bw_noir': "Film Noir: High contrast chiaroscuro lighting.",
    'art_vaporwave': "Vaporwave: Neon grid, retro 80s glitch.",
    'art_dreamcore': "Dreamcore: Surreal liminality, soft focus.",
    'art_oil_painting': "Oil Painting: Classical brush stroke texture.",
    'fashion_voguestyle': "Vogue Editorial: Bold, high-end studio polish.",
    'fashion_high_key': "High Key Studio: Bright, commercial, minimal shadow.",
}

DEFAULT_STYLE = "Clean professional photography"

SOCIAL_STRATEGIES: Dict[str, str] = {
    'authenticity': "Authentic, relatable, UGC feel.",
    'humor': "Humorous, playful, witty voice.",
    'niche': "Niche focused, specialized language.",
    'ai_collab': "Transparent AI co-creation tone.",
    'fast_paced': "High energy, Reels/TikTok hooks.",
    'educational': "Knowledgeable expert guide tone.",
    'bts': "Behind-the-scenes storytelling.",
    'ugc': "Community-focused, celebratory user voice.",
}

# Platform key -> field description for the structured social posts output
SOCIAL_PLATFORMS: Dict[str, str] = {
    'facebook': 'A caption for Facebook.',
    'instagram': 'A caption for Instagram.',
    'tiktok': 'A script idea or caption for a TikTok.',
    'youtube': 'A title and description for YouTube.',
    'pinterest': 'A Pin title and caption.',
    'x': 'A short caption for X.',
    'blog': 'A short blog post idea.',
}

LIFESTYLE_OPTIONS: Dict[str, List[str]] = {
    'scene': [
        'Coffee Shop Table', 'Street Style / Outdoor', 'Dressing Table / Vanity',
        'Gift Box / Packaging', 'Living Room / Sofa', 'Bedroom / Bedside Table',
        'Office Desk', 'Travel / Airport', 'Event / Party',
    ],
    'props': [
        'Hand + Bag', 'Coffee Cup', 'Flowers', 'Gift Box', 'Book / Notebook',
        'Laptop / Phone', 'Candle / Jewelry Tray', 'Food / Dessert', 'Holiday Decor',
    ],
    'atmosphere': [
        'Cozy / Warm', 'Exquisite / Premium', 'Playful', 'Festive', 'Minimalist',
        'Relaxed / Casual', 'Romantic', 'Vibrant / Energetic',
    ],
    'audience': [
        'Young Woman (20-30, fashion/lifestyle)',
        'Mom (family, gift angle)',
        'Couple (romantic, anniversary, Valentine’s)',
        'Friends (sharing, gifting, social hangout)',
    ],
    'close_up_details': [
        'Texture Detail', 'On Hand', 'Reflection', 'In Flat Lay', 'Peeking Out',
    ],
}

VIDEO_OPTIONS: Dict[str, List[str]] = {
    'camera_movements': [
        'Static', 'Dolly In', 'Dolly Out', 'Pan Left', 'Pan Right', 'Tilt Up',
        'Tilt Down', 'Crane Up', 'Crane Down', 'Handheld', 'Orbital', 'Tracking',
        'Zoom In', 'Zoom Out', '360 Spin',
    ],
    'styles': [
        'Cinematic', 'Animation', 'Stop-motion', 'Documentary', 'Vintage Film',
        'Hyper-realistic', 'Sci-Fi', 'Minimalist',
    ],
    'actions': [
        'hair_blowing', 'gentle_breathing', 'eye_blink', 'liquid_ripples',
        'dust_motes', 'shimmering_light', 'leaves_rustling', 'slow_rotation',
        'steam_rising', 'lens_flare', 'clothes_swaying', 'raindrops',
        'snow_fluttering', 'bokeh_shifting', 'shadow_movement',
    ],
    'scenes': [
        'cyberpunk', 'mediterranean', 'white_studio', 'rainforest', 'marble_luxury',
        'golden_hour', 'misty_morning', 'hitech_lab', 'autumn_cabin', 'space_station',
        'vintage_diner', 'zen_garden', 'warehouse', 'cloudscape', 'french_balcony',
    ],
}

# Aspect ratios the image model accepts, with their numeric value
STANDARD_ASPECT_RATIOS: List[Tuple[str, float]] = [
    ('1:1', 1.0),
    ('16:9', 16 / 9),
    ('9:16', 9 / 16),
    ('4:3', 4 / 3),
    ('3:4', 3 / 4),
]

# Frames produced when extending a shot for video
EXTEND_FRAME_PROMPTS: List[Tuple[str, str]] = [
    ('Zoom out.', 'Zoom Out'),
    ('Extend left.', 'Pan Left'),
    ('Extend up.', 'Tilt Up'),
    ('Extend right.', 'Pan Right'),
]


def calculate_closest_aspect_ratio(aspect_ratio: str, custom_dimensions: Optional[dict] = None) -> str:
    """
    Resolve the aspect ratio sent to the image model.

    Standard ratios pass through. For 'custom' the nearest standard ratio to
    width/height is picked; missing or zero dimensions fall back to 1:1.
    """
    if aspect_ratio != 'custom':
        return aspect_ratio
    width = (custom_dimensions or {}).get('width') or 0
    height = (custom_dimensions or {}).get('height') or 0
    if not width or not height:
        return '1:1'

    ratio = width / height
    closest_id, _ = min(STANDARD_ASPECT_RATIOS, key=lambda std: abs(ratio - std[1]))
    return closest_id


def perspective_label(angle_id: str) -> str:
    """Display label for an angle id (custom angles keep the user's text)."""
    if angle_id.startswith(CUSTOM_ANGLE_PREFIX):
        return angle_id[len(CUSTOM_ANGLE_PREFIX):]
    return PERSPECTIVE_LABELS.get(angle_id, angle_id)


def style_filter_prompt(style_filter: str) -> str:
    if not style_filter:
        return DEFAULT_STYLE
    return STYLE_FILTERS.get(style_filter, style_filter)


def strategy_prompts(strategy_ids: List[str]) -> List[str]:
    """Prompt fragments for the selected strategies (unknown ids are skipped)."""
    return [SOCIAL_STRATEGIES[s] for s in strategy_ids if s in SOCIAL_STRATEGIES]


def build_angle_list(
    selected_angles: List[str],
    product_studio_angles: Optional[List[str]] = None,
    custom_angles: Optional[List[str]] = None
) -> List[str]:
    """Combine the three angle groups into one list of angle ids."""
    for group, name in ((selected_angles, 'selected_angles'),
                        (product_studio_angles, 'product_studio_angles'),
                        (custom_angles, 'custom_angles')):
        if group is not None and not (isinstance(group, list) and all(isinstance(a, str) for a in group)):
            raise ValueError(f'{name} must be a list of angle ids')
    angles = list(selected_angles or []) + list(product_studio_angles or [])
    for angle in custom_angles or []:
        angle = (angle or '').strip()
        if angle:
            angles.append(f'{CUSTOM_ANGLE_PREFIX}{angle}')
    return angles


def expand_angles(angle_ids: List[str], images_per_angle: int = 1) -> List[dict]:
    """
    One entry per image to render.

    Returns:
        List of {'angle': prompt text, 'id': angle id, 'index': 1-based variation}
    """
    expanded = []
    for angle_id in angle_ids:
        for i in range(images_per_angle):
            angle = f'{angle_id} (Var {i + 1})' if images_per_angle > 1 else angle_id
            expanded.append({'angle': angle, 'id': angle_id, 'index': i + 1})
    return expanded


def validate_output_count(angle_count: int, images_per_angle: int) -> int:
    """
    Check that a run produces between 1 and MAX_TOTAL_IMAGES images.

    Returns:
        Total number of images

    Raises:
        ValueError: no angles selected, or too many outputs
    """
    if angle_count == 0:
        raise ValueError('Please select at least one perspective (Shot & Angle) to generate.')
    total = angle_count * images_per_angle
    if total > MAX_TOTAL_IMAGES:
        raise ValueError(
            f'You are attempting to generate {total} images. The maximum allowed is '
            f'{MAX_TOTAL_IMAGES}. Please reduce angles or quantity.'
        )
    return total


def get_options() -> dict:
    """Everything a client needs to render the settings form."""
    return {
        'shot_angles': [{'id': a, 'label': PERSPECTIVE_LABELS[a]} for a in SHOT_ANGLES],
        'product_studio_angles': [{'id': a, 'label': PERSPECTIVE_LABELS[a]} for a in PRODUCT_STUDIO_ANGLES],
        'focus_subjects': FOCUS_SUBJECTS,
        'style_filters': [{'id': k, 'description': v} for k, v in STYLE_FILTERS.items()],
        'social_strategies': [{'id': k, 'description': v} for k, v in SOCIAL_STRATEGIES.items()],
        'social_platforms': list(SOCIAL_PLATFORMS.keys()),
        'lifestyle': LIFESTYLE_OPTIONS,
        'video': VIDEO_OPTIONS,
        'aspect_ratios': [r for r, _ in STANDARD_ASPECT_RATIOS] + ['custom'],
        'max_total_images': MAX_TOTAL_IMAGES,
    }
