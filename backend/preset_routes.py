"""
Preset API Routes

Endpoints for saving, loading and deleting named creative settings.
"""
from flask import Blueprint, jsonify, request

from database import delete_preset, get_preset, list_presets, save_preset
from logging_config import get_logger
from models import Preset

logger = get_logger('presets')

preset_bp = Blueprint('presets', __name__, url_prefix='/api/presets')

MAX_NAME_LENGTH = 100


def _to_preset(record: dict) -> Preset:
    return Preset(name=record['name'], settings=record['settings'])


@preset_bp.route('', methods=['GET'])
def list_all_presets():
    """List saved presets, alphabetically."""
    presets = [_to_preset(r).to_dict() for r in list_presets()]
    return jsonify({'presets': presets, 'total': len(presets)})


@preset_bp.route('', methods=['POST'])
def create_preset():
    """
    Save the current creative settings under a name.

    Expected JSON:
    - name: Preset name (trimmed, must be unique unless overwrite is true)
    - settings: Object with the creative settings
    - overwrite: Replace an existing preset with the same name (optional)
    """
    data = request.get_json(silent=True) or {}
    name = str(data.get('name') or '').strip()
    settings = data.get('settings')

    if not name:
        return jsonify({'error': 'Preset name is required'}), 400
    if len(name) > MAX_NAME_LENGTH:
        return jsonify({'error': f'Preset name must be at most {MAX_NAME_LENGTH} characters'}), 400
    if not isinstance(settings, dict):
        return jsonify({'error': 'Preset settings must be an object'}), 400

    if get_preset(name) and not data.get('overwrite'):
        return jsonify({
            'error': f'A preset with the name "{name}" already exists. Please choose a different name.'
        }), 409

    save_preset(name, settings)
    logger.info(f"Saved preset '{name}'")
    return jsonify({'status': 'saved', 'preset': Preset(name=name, settings=settings).to_dict()}), 201


@preset_bp.route('/<name>', methods=['GET'])
def get_single_preset(name: str):
    record = get_preset(name)
    if record is None:
        return jsonify({'error': f'Preset not found: {name}'}), 404
    return jsonify(_to_preset(record).to_dict())


@preset_bp.route('/<name>', methods=['DELETE'])
def remove_preset(name: str):
    if not delete_preset(name):
        return jsonify({'error': f'Preset not found: {name}'}), 404
    logger.info(f"Deleted preset '{name}'")
    return jsonify({'status': 'deleted', 'name': name})
