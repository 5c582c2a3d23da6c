"""
Bulk import routes for the Book Catalog Service.
"""

import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path

from flask import Blueprint, current_app, jsonify, request
from werkzeug.utils import secure_filename

from bookcatalog.db.database import get_db_session
from bookcatalog.db.models import ImportLog, ImportRun
from bookcatalog.reconcile.service import create_catalog_service_from_config
from bookcatalog.sources.tabular import (
    CSV_SUFFIXES,
    EXCEL_SUFFIXES,
    RowListSource,
    open_source,
)
from bookcatalog.utils.logging import get_logger

logger = get_logger(__name__)

imports_bp = Blueprint('imports', __name__, url_prefix='/api/imports')

ALLOWED_SUFFIXES = EXCEL_SUFFIXES + CSV_SUFFIXES


class UploadError(ValueError):
    pass


@contextmanager
def saved_upload(upload_dir=None):
    """Save the uploaded 'file' to disk for the duration of the block."""
    upload = request.files.get('file')
    if upload is None or not upload.filename:
        raise UploadError('A spreadsheet must be uploaded as "file"')

    filename = secure_filename(upload.filename) or 'upload'
    suffix = Path(upload.filename).suffix.lower()
    if suffix not in ALLOWED_SUFFIXES:
        raise UploadError(f'Unsupported file type: {suffix or "none"}')

    if upload_dir:
        os.makedirs(upload_dir, exist_ok=True)
    fd, path = tempfile.mkstemp(suffix=suffix, dir=upload_dir)
    os.close(fd)
    try:
        upload.save(path)
        yield path, Path(upload.filename).stem or Path(filename).stem
    finally:
        os.remove(path)


def _form_json(name):
    raw = request.form.get(name)
    if not raw:
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        raise UploadError(f'{name} must be valid JSON')
    if not isinstance(value, dict):
        raise UploadError(f'{name} must be a JSON object')
    return value


@imports_bp.route('/validate', methods=['POST'])
def validate_upload():
    """Check an uploaded spreadsheet's headers against the field tables."""
    service = create_catalog_service_from_config(current_app.config.get('CATALOG_CONFIG'))
    try:
        with saved_upload(service.config.upload_dir) as (path, _):
            source = open_source(path)
            headers = source.headers()
            total_rows = source.count_rows()
    except UploadError as e:
        return jsonify({'success': False, 'error': str(e)}), 400
    except Exception as e:
        logger.error("Error validating spreadsheet", error=str(e))
        return jsonify({'success': False, 'message': 'Error reading spreadsheet', 'error': str(e)}), 400

    if not headers:
        return jsonify({
            'success': False,
            'message': 'Spreadsheet is empty or has no data',
            'headers': [],
            'mapping': {},
        }), 400

    analysis = service.mapper.analyze(headers).to_dict()
    analysis['validation']['totalRows'] = total_rows
    return jsonify({
        'success': True,
        'message': 'Spreadsheet validation completed',
        **analysis,
    })


@imports_bp.route('', methods=['POST'])
def import_upload():
    """Bulk import an uploaded spreadsheet."""
    service = create_catalog_service_from_config(current_app.config.get('CATALOG_CONFIG'))
    try:
        mapping = _form_json('mapping')
        options = _form_json('options') or request.form.to_dict()
        with saved_upload(service.config.upload_dir) as (path, original_name):
            source = open_source(path)
            report = service.runner().run(
                source,
                mapping=mapping,
                source_name=request.form.get('source') or original_name,
                policy=service.policy_from(options),
            )
    except UploadError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    return jsonify(report.to_dict()), 200 if report.success else 500


@imports_bp.route('/rows', methods=['POST'])
def import_rows():
    """Bulk import rows given as JSON."""
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return jsonify({'success': False, 'error': 'request body must be a JSON object'}), 400
    rows = payload.get('rows')
    if not isinstance(rows, list):
        return jsonify({'success': False, 'error': 'rows must be a list of objects'}), 400
    if not all(isinstance(r, dict) for r in rows):
        return jsonify({'success': False, 'error': 'rows must be a list of objects'}), 400

    source_name = payload.get('source')
    if not source_name:
        return jsonify({'success': False, 'error': 'source is required'}), 400
    if not isinstance(payload.get('policy') or {}, dict):
        return jsonify({'success': False, 'error': 'policy must be an object'}), 400

    service = create_catalog_service_from_config(current_app.config.get('CATALOG_CONFIG'))
    source = RowListSource(rows, headers=payload.get('headers'), name=source_name)
    report = service.runner().run(
        source,
        mapping=payload.get('mapping'),
        source_name=source_name,
        policy=service.policy_from(payload.get('policy')),
    )
    return jsonify(report.to_dict()), 200 if report.success else 500


@imports_bp.route('/runs')
def get_runs():
    """Get import runs."""
    limit = request.args.get('limit', 20, type=int)

    with get_db_session() as session:
        runs = session.query(ImportRun).order_by(
            ImportRun.started_at.desc()
        ).limit(limit).all()

        return jsonify([{
            'run_id': r.run_id,
            'source': r.source_name,
            'started_at': r.started_at.isoformat() if r.started_at else None,
            'completed_at': r.completed_at.isoformat() if r.completed_at else None,
            'status': r.status,
            'total': r.total,
            'inserted': r.inserted,
            'updated': r.updated,
            'skipped': r.skipped,
            'conflicts': r.conflicts,
            'duplicates': r.duplicates,
            'errors': r.errors,
            'log_file': r.log_file,
            'error': r.error_message,
        } for r in runs])


@imports_bp.route('/logs')
def get_logs():
    """Get recent logs."""
    limit = request.args.get('limit', 100, type=int)
    level = request.args.get('level')
    run_id = request.args.get('run_id')

    with get_db_session() as session:
        query = session.query(ImportLog)

        if level:
            query = query.filter(ImportLog.level == level.upper())
        if run_id:
            query = query.filter(ImportLog.import_run_id == run_id)

        logs = query.order_by(ImportLog.created_at.desc()).limit(limit).all()

        return jsonify([{
            'id': l.id,
            'level': l.level,
            'message': l.message,
            'details': l.details,
            'run_id': l.import_run_id,
            'created_at': l.created_at.isoformat() if l.created_at else None,
        } for l in logs])
