"""
Import settings routes for the Book Catalog Service.
"""

from flask import Blueprint, current_app, jsonify, request
from pydantic import ValidationError

from bookcatalog.config import ConfigManager
from bookcatalog.db.database import get_db_session
from bookcatalog.reconcile.models import ImportPolicy, to_bool

settings_bp = Blueprint('settings', __name__, url_prefix='/api/settings')

SETTINGS_FIELDS = (
    'default_currency', 'skip_duplicates', 'skip_conflicts',
    'update_existing', 'write_audit_log',
)


def _settings_body(config) -> dict:
    return {name: getattr(config, name) for name in SETTINGS_FIELDS}


@settings_bp.route('', methods=['GET'])
def get_settings():
    """Current import defaults, database values over environment."""
    with get_db_session() as session:
        manager = ConfigManager(db_session=session, env_config=current_app.config.get('CATALOG_CONFIG'))
        config = manager.get_config()
    return jsonify(_settings_body(config))


@settings_bp.route('', methods=['POST'])
def save_settings():
    """Save import defaults to the database."""
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return jsonify({'success': False, 'error': 'request body must be a JSON object'}), 400

    try:
        with get_db_session() as session:
            manager = ConfigManager(db_session=session, env_config=current_app.config.get('CATALOG_CONFIG'))
            current = manager.get_config()

            policy = ImportPolicy.from_options(payload, defaults=ImportPolicy(
                skip_duplicates=current.skip_duplicates,
                skip_conflicts=current.skip_conflicts,
                update_existing=current.update_existing,
            ))
            updates = {
                'skip_duplicates': policy.skip_duplicates,
                'skip_conflicts': policy.skip_conflicts,
                'update_existing': policy.update_existing,
            }
            if payload.get('default_currency'):
                updates['default_currency'] = str(payload['default_currency']).strip().upper()
            if 'write_audit_log' in payload:
                updates['write_audit_log'] = to_bool(payload['write_audit_log'])

            config = current.model_validate({**current.model_dump(), **updates})
            manager.save_config(config)
    except ValidationError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    return jsonify({'success': True, **_settings_body(config)})
