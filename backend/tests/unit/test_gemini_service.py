"""
Unit tests for the Gemini generation pipeline (Gemini client faked).
"""
import pytest

import gemini_service
from gemini_service import GeminiServiceError, SAFETY_BLOCK_MESSAGE
from models import (
    CustomLifestyle, Description, GenerationOptions, ImageRef, ProductInfo, VideoPromptConfig,
)


class StatusError(Exception):
    def __init__(self, message, code=None):
        super().__init__(message)
        self.code = code


@pytest.fixture
def product():
    return ProductInfo(name='Serum', selling_points='Hydrating, vegan', link='https://example.com/serum')


def run_pipeline(image, product, options, progress=None):
    return gemini_service.generate_content_from_image(
        image, [], None, [], product, options, CustomLifestyle(), 'Launch campaign',
        progress_callback=progress,
    )


class TestClient:
    """Tests for client construction."""

    def test_missing_key_raises(self, fake_genai, monkeypatch, sample_image_ref, product):
        """No API key should raise GeminiServiceError."""
        monkeypatch.delenv('GEMINI_API_KEY', raising=False)
        monkeypatch.delenv('API_KEY', raising=False)
        with pytest.raises(GeminiServiceError, match='GEMINI_API_KEY'):
            gemini_service.analyze_image(sample_image_ref)

    def test_custom_endpoint(self, fake_genai, monkeypatch, sample_image_ref):
        """GEMINI_ENDPOINT should become the client base_url."""
        monkeypatch.setenv('GEMINI_ENDPOINT', 'https://proxy.example.com')
        fake_genai.text_replies.append(fake_genai.text_response('Nice light.'))
        gemini_service.analyze_image(sample_image_ref)
        assert fake_genai.client_kwargs[-1]['http_options']['base_url'] == 'https://proxy.example.com'
        assert fake_genai.client_kwargs[-1]['api_key'] == 'test-key'


class TestGenerateContentFromImage:
    """Tests for the full pipeline."""

    def test_full_run(self, fake_genai, sample_image_ref, product):
        """Posts, prompts, renders and per-image copy end up in GeneratedData."""
        fake_genai.text_replies.extend([
            fake_genai.text_response({'instagram': 'Glow up!', 'tiktok': 'not selected'}),
            fake_genai.text_response({'perspectives': [
                {'imagePrompt': 'Serum on marble', 'veoPrompt': 'Slow push in'},
                {'imagePrompt': 'Hand holding serum', 'veoPrompt': 'Handheld pan'},
            ]}),
            fake_genai.text_response({'english_post': 'EN one', 'chinese_post': 'CN one'}),
            fake_genai.text_response({'english_post': 'EN two', 'chinese_post': 'CN two'}),
        ])
        options = GenerationOptions(
            selected_angles=['closeUp', 'pov'],
            selected_social_platforms=['Instagram'],
            generate_social_copy=True,
        )
        steps = []

        data = run_pipeline(sample_image_ref, product, options,
                            progress=lambda step, message, percent: steps.append((step, percent)))

        assert data.social_posts == {'instagram': 'Glow up!'}
        assert [p.label for p in data.perspectives] == ['Close-up', 'POV']
        assert data.perspectives[0].id.startswith('closeUp-1-')
        assert data.perspectives[0].prompt == 'Serum on marble'
        assert data.perspectives[1].veo_prompt == 'Handheld pan'
        assert data.perspectives[0].social_copy == Description(en='EN one', cn='CN one')
        assert data.perspectives[0].main_image.description.en == 'A caption'
        assert steps[-1] == ('complete', 100)
        assert ('rendering', 30) in steps

    def test_render_config(self, fake_genai, sample_image_ref, product):
        """Renders ask for image+text at 1K with the resolved aspect ratio."""
        fake_genai.text_replies.append(fake_genai.text_response({'perspectives': [
            {'imagePrompt': 'A', 'veoPrompt': 'B'},
        ]}))
        options = GenerationOptions(selected_angles=['heroShot'], aspect_ratio='custom',
                                    custom_dimensions={'width': 1080, 'height': 1920})
        run_pipeline(sample_image_ref, product, options)

        config = fake_genai.calls_for('image')[0]['config']
        assert config.image_config.aspect_ratio == '9:16'
        assert config.image_config.image_size == '1K'
        prompt = fake_genai.calls_for('image')[0]['contents'][-1]
        assert prompt.startswith('Generate image: "A".')
        assert '"en"' in prompt

    def test_no_platforms_skips_social_call(self, fake_genai, sample_image_ref, product):
        """Without selected platforms only the prompt call hits the text model."""
        options = GenerationOptions(selected_angles=['closeUp'])
        fake_genai.text_replies.append(fake_genai.text_response({'perspectives': [
            {'imagePrompt': 'A', 'veoPrompt': 'B'},
        ]}))
        data = run_pipeline(sample_image_ref, product, options)
        assert data.social_posts == {}
        assert len(fake_genai.calls_for('text')) == 1

    def test_social_failure_is_soft(self, fake_genai, sample_image_ref, product):
        """A failing social call leaves posts empty and the run continues."""
        fake_genai.text_replies.extend([
            ValueError('bad request'),
            fake_genai.text_response({'perspectives': [{'imagePrompt': 'A', 'veoPrompt': 'B'}]}),
        ])
        options = GenerationOptions(selected_angles=['closeUp'], selected_social_platforms=['x'])
        data = run_pipeline(sample_image_ref, product, options)
        assert data.social_posts == {}
        assert len(data.perspectives) == 1

    def test_prompt_failure_uses_fallbacks(self, fake_genai, sample_image_ref, product):
        """Unparseable prompt JSON falls back to generic prompts per angle."""
        fake_genai.text_replies.append(fake_genai.text_response('I cannot help with that.'))
        options = GenerationOptions(selected_angles=['closeUp'])
        data = run_pipeline(sample_image_ref, product, options)
        assert data.perspectives[0].prompt == 'Pro shot of Serum, closeUp.'
        assert data.perspectives[0].veo_prompt == 'Cinematic video of closeUp.'

    def test_short_prompt_reply_padded(self, fake_genai, sample_image_ref, product):
        """Missing entries are filled with fallback prompts."""
        fake_genai.text_replies.append(fake_genai.text_response({'perspectives': [
            {'imagePrompt': 'Only one', 'veoPrompt': 'V'},
        ]}))
        options = GenerationOptions(selected_angles=['closeUp', 'pov'])
        data = run_pipeline(sample_image_ref, product, options)
        assert [p.prompt for p in data.perspectives] == ['Only one', 'Pro shot of Serum, pov.']

    def test_variation_labels(self, fake_genai, sample_image_ref, product):
        """More than one image per angle numbers the labels."""
        options = GenerationOptions(selected_angles=['closeUp'], images_per_angle=2)
        data = run_pipeline(sample_image_ref, product, options)
        assert [p.label for p in data.perspectives] == ['Close-up #1', 'Close-up #2']
        assert data.perspectives[1].id.startswith('closeUp-2-')

    def test_render_without_image_skipped(self, fake_genai, sample_image_ref, product):
        fake_genai.image_replies.extend([fake_genai.empty_response('SAFETY'), fake_genai.image_response()])
        options = GenerationOptions(selected_angles=['closeUp', 'pov'])
        data = run_pipeline(sample_image_ref, product, options)
        assert [p.label for p in data.perspectives] == ['POV']

    def test_render_error_raises(self, fake_genai, sample_image_ref, product):
        """A non-transient render failure aborts the run."""
        fake_genai.image_replies.append(RuntimeError('invalid image'))
        options = GenerationOptions(selected_angles=['closeUp'])
        with pytest.raises(GeminiServiceError, match='Image generation failed: invalid image'):
            run_pipeline(sample_image_ref, product, options)

    def test_overloaded_render_retried(self, fake_genai, sample_image_ref, product):
        fake_genai.image_replies.extend([StatusError('The model is overloaded', 503), fake_genai.image_response()])
        options = GenerationOptions(selected_angles=['closeUp'])
        data = run_pipeline(sample_image_ref, product, options)
        assert len(data.perspectives) == 1
        assert len(fake_genai.calls_for('image')) == 2

    def test_renders_are_sequential_with_focus(self, fake_genai, sample_image_ref, product, sample_png):
        """The focus crop is sent with every render after the source images."""
        focus = ImageRef(data=b'focus-bytes', mime_type='image/png')
        options = GenerationOptions(selected_angles=['closeUp', 'pov'])
        gemini_service.generate_content_from_image(
            sample_image_ref, [], focus, [], product, options, CustomLifestyle(), 'Goal'
        )
        image_calls = fake_genai.calls_for('image')
        assert len(image_calls) == 2
        for call in image_calls:
            assert len(call['contents']) == 3
            assert call['contents'][1].inline_data.data == b'focus-bytes'


class TestCreativePrompt:
    """Tests for build_creative_prompt()."""

    def test_includes_direction(self, product):
        options = GenerationOptions(
            ugc_mode=True,
            style_filter='kodak_gold_200',
            target_region='Japan',
            selected_focus_subjects=['hand'],
            video_prompt_config=VideoPromptConfig(scene='golden_hour', camera_movement='Dolly In'),
        )
        prompt = gemini_service.build_creative_prompt(
            [{'angle': 'closeUp', 'id': 'closeUp', 'index': 1}], product, 'Launch',
            options, CustomLifestyle(atmosphere='Calm'),
        )
        assert 'Kodak Gold 200' in prompt
        assert 'LO-FI AUTHENTICITY' in prompt
        assert 'Target Region: Japan' in prompt
        assert 'Emphasis/Focus Details: hand' in prompt
        assert 'Camera Movement: Dolly In' in prompt
        assert 'Atmosphere: Calm' in prompt

    def test_static_video_config_adds_nothing(self, product):
        options = GenerationOptions(video_prompt_config=VideoPromptConfig())
        prompt = gemini_service.build_creative_prompt(
            [{'angle': 'pov', 'id': 'pov', 'index': 1}], product, '', options, CustomLifestyle(),
        )
        assert 'Video Direction' not in prompt
        assert 'Whole Product' in prompt


class TestSingleImageOperations:
    """Tests for regenerate / edit / refine / variations / extend."""

    def test_regenerate(self, fake_genai, sample_image_ref):
        image = gemini_service.generate_single_image(
            'Serum on marble', sample_image_ref, [], None, [], 'custom', {'width': 1600, 'height': 900}
        )
        assert image.label == 'Regenerated'
        assert fake_genai.calls_for('image')[0]['config'].image_config.aspect_ratio == '16:9'

    def test_regenerate_safety_block(self, fake_genai, sample_image_ref):
        fake_genai.image_replies.append(fake_genai.empty_response('SAFETY'))
        with pytest.raises(GeminiServiceError) as exc_info:
            gemini_service.generate_single_image('p', sample_image_ref, [], None, [])
        assert str(exc_info.value) == SAFETY_BLOCK_MESSAGE

    def test_regenerate_other_reason(self, fake_genai, sample_image_ref):
        fake_genai.image_replies.append(fake_genai.empty_response('MAX_TOKENS'))
        with pytest.raises(GeminiServiceError, match=r'\(Reason: MAX_TOKENS\)'):
            gemini_service.generate_single_image('p', sample_image_ref, [], None, [])

    def test_edit_failure(self, fake_genai, sample_image_ref):
        fake_genai.image_replies.append(fake_genai.empty_response('STOP'))
        with pytest.raises(GeminiServiceError, match='Image editing failed.'):
            gemini_service.edit_image(sample_image_ref, sample_image_ref, 'add a ribbon')

    def test_edit_returns_image(self, fake_genai, sample_image_ref):
        fake_genai.image_replies.append(fake_genai.image_response(data=b'edited', mime_type='image/jpeg'))
        edited = gemini_service.edit_image(sample_image_ref, sample_image_ref, 'add a ribbon')
        assert edited == ImageRef(data=b'edited', mime_type='image/jpeg')

    def test_refine(self, fake_genai, sample_image_ref):
        refined = gemini_service.refine_image(sample_image_ref, 'warmer tones')
        assert refined.label == 'Refined'
        assert 'warmer tones' in fake_genai.calls_for('image')[0]['contents'][-1]

    def test_variations_drop_empty(self, fake_genai, sample_image_ref):
        fake_genai.image_replies.extend([
            fake_genai.image_response(), fake_genai.empty_response('STOP'), fake_genai.image_response(),
        ])
        variations = gemini_service.generate_image_variations(sample_image_ref)
        assert [v.label for v in variations] == ['Variation', 'Variation']
        assert len(fake_genai.calls_for('image')) == 3

    def test_extend_frame(self, fake_genai, sample_image_ref):
        fake_genai.text_replies.append(fake_genai.text_response({'en': 'Moving out', 'cn': '拉远'}))
        frames, transition = gemini_service.extend_frame_for_video(sample_image_ref)
        assert [f.label for f in frames] == ['Zoom Out', 'Pan Left', 'Tilt Up', 'Pan Right']
        assert transition == Description(en='Moving out', cn='拉远')

    def test_extend_frame_failure(self, fake_genai, sample_image_ref):
        fake_genai.image_replies.extend([fake_genai.image_response(), fake_genai.empty_response('SAFETY')])
        with pytest.raises(GeminiServiceError, match='Pan Left'):
            gemini_service.extend_frame_for_video(sample_image_ref)


class TestExpansionAndIdeas:
    """Tests for generate_more_images(), brainstorm and analysis."""

    def test_generate_more_images(self, fake_genai, sample_image_ref, product, generated_data):
        prompt = 'Show it at the beach at sunset'
        new = gemini_service.generate_more_images(
            sample_image_ref, [], None, [], product, GenerationOptions(),
            generated_data.perspectives, prompt,
        )
        assert len(new) == 2
        assert new[0].label == f'{prompt[:15]}... (1)'
        assert new[1].id.startswith('expansion-')
        assert new[0].veo_prompt == 'Cinematic video.'
        # main image + both existing perspectives + prompt
        assert len(fake_genai.calls_for('image')[0]['contents']) == 4

    def test_brainstorm(self, fake_genai, sample_image_ref, product):
        fake_genai.text_replies.append(fake_genai.text_response(
            '```json\n{"angles": ["Floating in water", "", "Frozen in ice"]}\n```'
        ))
        assert gemini_service.generate_brainstorm_angles(sample_image_ref, product) == [
            'Floating in water', 'Frozen in ice'
        ]

    def test_brainstorm_bad_json(self, fake_genai, sample_image_ref, product):
        fake_genai.text_replies.append(fake_genai.text_response('no ideas'))
        with pytest.raises(GeminiServiceError, match='Brainstorm failed'):
            gemini_service.generate_brainstorm_angles(sample_image_ref, product)

    def test_analyze(self, fake_genai, sample_image_ref):
        fake_genai.text_replies.append(fake_genai.text_response('Soft light from the left.'))
        assert gemini_service.analyze_image(sample_image_ref) == 'Soft light from the left.'
