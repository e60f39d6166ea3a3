"""
Data Models

Dataclasses shared by the generation pipeline, the exporters and the HTTP API.
Images are kept as raw bytes; the JSON form carries them as data URLs.
"""
import base64
import re
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Any

DATA_URL_PATTERN = re.compile(r'^data:([a-zA-Z0-9]+/[a-zA-Z0-9\-.+]+)?(;base64)?,(.*)$', re.DOTALL)


def _require_dict(value: Any, name: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f'{name} must be an object')
    return value


def _string_list(value: Any, name: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f'{name} must be a list of strings')
    return list(value)


def _number(value: Any, name: str, cast=float):
    if isinstance(value, bool):
        raise ValueError(f'{name} must be a number')
    try:
        return cast(value)
    except (TypeError, ValueError):
        raise ValueError(f'{name} must be a number')


@dataclass
class ImageRef:
    """Raw image bytes plus MIME type."""
    data: bytes
    mime_type: str = 'image/png'

    @property
    def base64(self) -> str:
        return base64.b64encode(self.data).decode('ascii')

    def to_data_url(self) -> str:
        return f'data:{self.mime_type};base64,{self.base64}'

    @classmethod
    def from_data_url(cls, data_url: str) -> 'ImageRef':
        """Parse a `data:<mime>;base64,<payload>` URL."""
        match = DATA_URL_PATTERN.match(data_url or '')
        if not match or not match.group(2):
            raise ValueError('Expected a base64 data URL')
        mime_type = match.group(1) or 'image/png'
        return cls(data=base64.b64decode(match.group(3)), mime_type=mime_type)

    @property
    def extension(self) -> str:
        ext = self.mime_type.split('/')[-1]
        return 'jpg' if ext == 'jpeg' else ext


@dataclass
class Description:
    """Bilingual (English / Chinese) caption."""
    en: str
    cn: str

    def to_dict(self) -> Dict[str, str]:
        return {'en': self.en, 'cn': self.cn}

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional['Description']:
        if not data:
            return None
        return cls(en=data.get('en', ''), cn=data.get('cn', ''))


@dataclass
class GeneratedImage:
    data: bytes
    mime_type: str
    label: str
    description: Optional[Description] = None

    @property
    def ref(self) -> ImageRef:
        return ImageRef(data=self.data, mime_type=self.mime_type)

    @property
    def src(self) -> str:
        return self.ref.to_data_url()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'src': self.src,
            'label': self.label,
            'description': self.description.to_dict() if self.description else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'GeneratedImage':
        ref = ImageRef.from_data_url(data['src'])
        return cls(
            data=ref.data,
            mime_type=ref.mime_type,
            label=data.get('label', ''),
            description=Description.from_dict(data.get('description')),
        )


@dataclass
class VideoPromptConfig:
    """Video direction chosen by the user for the motion prompts."""
    scene: str = ''
    action: str = ''
    style: str = ''
    camera_movement: str = 'Static'
    composition: str = ''
    atmosphere: str = ''

    def is_empty(self) -> bool:
        return not any([self.scene, self.action, self.style, self.composition, self.atmosphere]) \
            and self.camera_movement in ('', 'Static')

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional['VideoPromptConfig']:
        if data is None:
            return None
        data = _require_dict(data, 'video_prompt_config')
        return cls(**{k: str(data.get(k) or '') for k in cls.__dataclass_fields__ if k in data})


@dataclass
class GeneratedPerspective:
    id: str
    label: str
    prompt: str
    main_image: GeneratedImage
    veo_prompt: Optional[str] = None
    social_copy: Optional[Description] = None
    extended_frames: List[GeneratedImage] = field(default_factory=list)
    transition_text: Optional[Description] = None
    is_extending: bool = False
    is_regenerating: bool = False
    error: Optional[str] = None

    def all_images(self) -> List[GeneratedImage]:
        return [self.main_image] + list(self.extended_frames)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'label': self.label,
            'prompt': self.prompt,
            'veo_prompt': self.veo_prompt,
            'main_image': self.main_image.to_dict(),
            'social_copy': self.social_copy.to_dict() if self.social_copy else None,
            'extended_frames': [f.to_dict() for f in self.extended_frames],
            'transition_text': self.transition_text.to_dict() if self.transition_text else None,
            'is_extending': self.is_extending,
            'is_regenerating': self.is_regenerating,
            'error': self.error,
        }


@dataclass
class GeneratedData:
    social_posts: Dict[str, str] = field(default_factory=dict)
    perspectives: List[GeneratedPerspective] = field(default_factory=list)

    def find(self, perspective_id: str) -> Optional[GeneratedPerspective]:
        return next((p for p in self.perspectives if p.id == perspective_id), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'social_posts': dict(self.social_posts),
            'perspectives': [p.to_dict() for p in self.perspectives],
        }


@dataclass
class FocusArea:
    """Crop box in source-image pixels."""
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> Optional['FocusArea']:
        data = _require_dict(data, 'focus_area')
        if not data:
            return None
        return cls(**{k: _number(data.get(k, 0), f'focus_area.{k}') for k in ('x', 'y', 'width', 'height')})


@dataclass
class ProductInfo:
    name: str = ''
    selling_points: str = ''
    link: str = ''


@dataclass
class CustomLifestyle:
    props: str = ''
    atmosphere: str = ''
    audience: str = ''

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'CustomLifestyle':
        data = _require_dict(data, 'custom_lifestyle')
        return cls(
            props=data.get('props', '') or '',
            atmosphere=data.get('atmosphere', '') or '',
            audience=data.get('audience', '') or '',
        )


@dataclass
class LifestyleScene:
    scene: List[str] = field(default_factory=list)
    props: List[str] = field(default_factory=list)
    atmosphere: List[str] = field(default_factory=list)
    audience: List[str] = field(default_factory=list)
    close_up_details: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'LifestyleScene':
        data = _require_dict(data, 'lifestyle_scene')
        return cls(**{k: _string_list(data.get(k), f'lifestyle_scene.{k}') for k in cls.__dataclass_fields__})


@dataclass
class GenerationOptions:
    selected_angles: List[str] = field(default_factory=list)
    selected_focus_subjects: List[str] = field(default_factory=list)
    generate_multi_person: bool = False
    generate_scene: bool = False
    consistency_mode: bool = False
    sensual_mode: bool = False
    ugc_mode: bool = False
    generate_social_copy: bool = False
    creativity_boost: bool = False
    lifestyle_scene: LifestyleScene = field(default_factory=LifestyleScene)
    selected_social_platforms: List[str] = field(default_factory=list)
    selected_social_strategies: List[str] = field(default_factory=list)
    style_filter: str = ''
    target_region: str = ''
    target_audience: str = ''
    aspect_ratio: str = '1:1'
    custom_dimensions: Dict[str, int] = field(default_factory=lambda: {'width': 0, 'height': 0})
    images_per_angle: int = 1
    video_prompt_config: Optional[VideoPromptConfig] = None

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> 'GenerationOptions':
        data = _require_dict(data, 'options')
        options = cls()
        for name, spec in cls.__dataclass_fields__.items():
            if name not in data:
                continue
            value = data[name]
            if name == 'lifestyle_scene':
                value = LifestyleScene.from_dict(value)
            elif name == 'video_prompt_config':
                value = VideoPromptConfig.from_dict(value)
            elif name == 'images_per_angle':
                value = max(1, _number(value or 1, name, int))
            elif name == 'custom_dimensions':
                value = _require_dict(value, name)
                value = {
                    'width': _number(value.get('width') or 0, 'custom_dimensions.width', int),
                    'height': _number(value.get('height') or 0, 'custom_dimensions.height', int),
                }
            elif spec.type == List[str]:
                value = _string_list(value, name)
            elif spec.type is bool:
                value = bool(value)
            elif spec.type is str:
                if value is not None and not isinstance(value, str):
                    raise ValueError(f'{name} must be a string')
                value = value or ''
            setattr(options, name, value)
        return options

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Preset:
    """Named snapshot of the creative settings."""
    name: str
    settings: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'settings': self.settings}
