"""
Import API routes for Manga Sync Service.
"""

from flask import Blueprint, current_app, jsonify, request

from manga_sync.db.models import ImportRun, ImportLog, Manga, Chapter

api_bp = Blueprint('api', __name__, url_prefix='/api')

EXTENSION_KEY = 'manga_sync'


def get_services():
    """Services attached to the current app by create_app."""
    return current_app.extensions[EXTENSION_KEY]


@api_bp.route('/import', methods=['POST'])
def trigger_import():
    """Start an import run in the background."""
    handle, accepted = get_services().runner.trigger_import()

    if not accepted:
        return jsonify({
            'success': False,
            'message': 'Import already running',
            'run_id': handle.run_id,
            'status': handle.status,
        }), 409

    return jsonify({
        'success': True,
        'message': 'Import job started in background',
        'run_id': handle.run_id,
        'status': handle.status,
    }), 202


@api_bp.route('/import/<run_id>')
def import_status(run_id):
    """Get the status of an import run."""
    services = get_services()

    handle = services.runner.get_handle(run_id)
    if handle is not None:
        return jsonify({'success': True, 'data': handle.to_dict()})

    with services.database.session() as session:
        run = session.query(ImportRun).filter(ImportRun.run_id == run_id).first()
        if run is None:
            return jsonify({'success': False, 'message': 'Import run not found'}), 404
        return jsonify({'success': True, 'data': run.to_dict()})


@api_bp.route('/import/cancel', methods=['POST'])
def cancel_import():
    """Cancel the in-flight import run."""
    run_id = get_services().runner.cancel()
    if run_id is None:
        return jsonify({'success': False, 'message': 'No import running'}), 409
    return jsonify({'success': True, 'run_id': run_id})


@api_bp.route('/status')
def status():
    """Get current import status."""
    services = get_services()
    current = services.runner.current
    running = current is not None and not current.done

    with services.database.session() as session:
        latest_run = session.query(ImportRun).order_by(
            ImportRun.started_at.desc()
        ).first()

        return jsonify({
            'running': running,
            'current_run_id': current.run_id if running else None,
            'phase': current.phase if running else None,
            'last_import': latest_run.started_at.isoformat() if latest_run else None,
            'last_import_status': latest_run.status if latest_run else None,
            'total_manga': session.query(Manga).count(),
            'total_chapters': session.query(Chapter).count(),
        })


@api_bp.route('/runs')
def get_runs():
    """Get import runs."""
    limit = request.args.get('limit', 20, type=int)

    with get_services().database.session() as session:
        runs = session.query(ImportRun).order_by(
            ImportRun.started_at.desc()
        ).limit(limit).all()

        return jsonify([r.to_dict() for r in runs])


@api_bp.route('/logs')
def get_logs():
    """Get recent logs."""
    limit = request.args.get('limit', 100, type=int)
    level = request.args.get('level')
    run_id = request.args.get('run_id')

    with get_services().database.session() as session:
        query = session.query(ImportLog)

        if level:
            query = query.filter(ImportLog.level == level.upper())
        if run_id:
            query = query.filter(ImportLog.run_id == run_id)

        logs = query.order_by(ImportLog.created_at.desc()).limit(limit).all()

        return jsonify([{
            'id': log.id,
            'level': log.level,
            'message': log.message,
            'details': log.details,
            'run_id': log.run_id,
            'created_at': log.created_at.isoformat() if log.created_at else None,
        } for log in logs])
