"""
Configuration routes for Manga Sync Service.
"""

from flask import Blueprint, jsonify, request
from pydantic import ValidationError

from manga_sync.config import OVERRIDABLE_FIELDS, ImportConfig
from manga_sync.utils.logging import get_logger
from manga_sync.web.routes.api import get_services

logger = get_logger(__name__)

config_bp = Blueprint('config', __name__, url_prefix='/api')


def _overridable(config: ImportConfig) -> dict:
    return {name: getattr(config, name) for name in OVERRIDABLE_FIELDS}


@config_bp.route('/config', methods=['GET'])
def get_config():
    """Current import settings, with database overrides applied."""
    config = get_services().config_manager.get_config()
    return jsonify({'success': True, 'data': _overridable(config)})


@config_bp.route('/config', methods=['POST'])
def save_config():
    """
    Save import setting overrides.

    Overrides apply from the next import run; the scheduler interval
    applies from the next service start.
    """
    services = get_services()
    updates = request.get_json(silent=True)
    if not isinstance(updates, dict) or not updates:
        return jsonify({'success': False, 'message': 'JSON object required'}), 400

    unknown = sorted(set(updates) - set(OVERRIDABLE_FIELDS))
    if unknown:
        return jsonify({
            'success': False,
            'message': 'Unknown settings',
            'fields': unknown,
        }), 400

    current = services.config_manager.get_config()
    try:
        config = ImportConfig(**{**current.model_dump(), **updates})
    except ValidationError as e:
        return jsonify({
            'success': False,
            'message': 'Invalid configuration',
            'errors': [
                {'field': '.'.join(str(part) for part in err['loc']), 'error': err['msg']}
                for err in e.errors()
            ],
        }), 400

    services.config_manager.save_config(config)
    services.runner.run_timeout_seconds = config.run_timeout_seconds
    logger.info("Configuration saved", **{name: updates[name] for name in sorted(updates)})

    return jsonify({'success': True, 'data': _overridable(config)})
