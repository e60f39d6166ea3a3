"""
fal.ai Video Service
Kling image-to-video through the fal.ai queue REST API
"""
import time
from typing import Callable, Optional

import requests

import settings
from logging_config import get_logger
from models import ImageRef

logger = get_logger('fal')

FAL_QUEUE_BASE = 'https://queue.fal.run'
KLING_VIDEO_MODEL = 'fal-ai/kling-video/v1.6/pro/image-to-video'

POLL_INTERVAL = 5       # seconds between status checks
MAX_POLL_ATTEMPTS = 60  # 5 minutes total
REQUEST_TIMEOUT = 30

ERROR_STATUSES = {'ERROR', 'FAILED'}

TIMEOUT_MESSAGE = (
    'Video generation timed out after 5 minutes. '
    'The service may be under heavy load. Please try again later.'
)

# Status callback: (message) -> None
StatusCallback = Callable[[str], None]


class FalServiceError(Exception):
    """Custom exception for fal.ai errors"""
    pass


def _get_headers() -> dict:
    key = settings.get_fal_api_key()
    if not key:
        raise FalServiceError('FAL_KEY environment variable not set')
    return {
        'Authorization': f'Key {key}',
        'Content-Type': 'application/json',
        'Accept': 'application/json',
    }


def _error_detail(response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or 'Request failed'
    if isinstance(body, dict):
        return str(body.get('detail') or body.get('error') or 'Request failed')
    return str(body)


def _submit(inputs: dict, headers: dict) -> dict:
    """Queue a request; returns the queue descriptor (request_id, status_url, response_url)."""
    url = f'{FAL_QUEUE_BASE}/{KLING_VIDEO_MODEL}'
    response = requests.post(url, json=inputs, headers=headers, timeout=REQUEST_TIMEOUT)
    if response.status_code != 200:
        raise FalServiceError(
            f'Failed to submit video generation request. The server responded with: {_error_detail(response)}'
        )
    data = response.json()
    request_id = data.get('request_id')
    if not request_id:
        raise FalServiceError('Fal.ai did not return a request id.')
    base = f'{FAL_QUEUE_BASE}/{KLING_VIDEO_MODEL}/requests/{request_id}'
    return {
        'request_id': request_id,
        'status_url': data.get('status_url') or f'{base}/status',
        'response_url': data.get('response_url') or base,
    }


def extract_video_url(result: dict) -> Optional[str]:
    """Video URL from a Kling result: {'video': {'url'}} or {'output': [{'url'}]}."""
    video = result.get('video')
    if isinstance(video, dict) and video.get('url'):
        return video['url']
    output = result.get('output')
    if isinstance(output, list) and output and isinstance(output[0], dict):
        return output[0].get('url')
    return None


def _joined_logs(status_data: dict) -> str:
    logs = status_data.get('logs') or []
    messages = [entry.get('message', '') for entry in logs if isinstance(entry, dict)]
    return '\n'.join(m for m in messages if m) or str(status_data.get('error') or 'Unknown model error')


def generate_video(
    image: ImageRef,
    video_prompt: str,
    status_callback: Optional[StatusCallback] = None,
    aspect_ratio: str = '1:1',
    duration: int = 5
) -> str:
    """
    Render a short video from one image and a motion prompt.

    Returns:
        URL of the rendered video

    Raises:
        FalServiceError: on submission failure, model error, or timeout
    """
    notify = status_callback or (lambda message: None)
    headers = _get_headers()

    notify('Preparing video request...')
    inputs = {
        'image_url': image.to_data_url(),
        'prompt': video_prompt,
        'duration': duration,
        'aspect_ratio': aspect_ratio,
    }

    notify('Sending to fal.ai...')
    try:
        queue = _submit(inputs, headers)
    except requests.RequestException as e:
        raise FalServiceError(f'Failed to submit video generation request: {e}')
    logger.info(f"Submitted video request {queue['request_id']}")

    notify('Video in progress...')
    for attempt in range(MAX_POLL_ATTEMPTS):
        time.sleep(POLL_INTERVAL)
        try:
            status_response = requests.get(
                queue['status_url'], params={'logs': 1}, headers=headers, timeout=REQUEST_TIMEOUT
            )
        except requests.RequestException as e:
            raise FalServiceError(f'Failed to get status from fal.ai: {e}')
        if not status_response.ok:
            raise FalServiceError(f'Failed to get status from fal.ai. Status: {status_response.status_code}')

        status_data = status_response.json()
        status = str(status_data.get('status') or 'UNKNOWN')

        if status == 'COMPLETED':
            break
        if status in ERROR_STATUSES:
            raise FalServiceError(
                f'Video generation failed. The model reported an error: {_joined_logs(status_data)}'
            )

        logger.debug(f"Video {queue['request_id']} status {status} (attempt {attempt + 1}/{MAX_POLL_ATTEMPTS})")
        notify(f'In progress: {status.lower()}...')
    else:
        logger.warning(f"Video {queue['request_id']} timed out")
        raise FalServiceError(TIMEOUT_MESSAGE)

    try:
        result_response = requests.get(queue['response_url'], headers=headers, timeout=REQUEST_TIMEOUT)
        result_response.raise_for_status()
    except requests.RequestException as e:
        raise FalServiceError(f'Failed to fetch video result: {e}')

    video_url = extract_video_url(result_response.json())
    if not video_url:
        raise FalServiceError('Could not find video URL in fal.ai response.')

    notify('Success!')
    logger.info(f"Video {queue['request_id']} ready: {video_url}")
    return video_url
