"""
Backup routes - Trigger a run and view run history.
"""

import hmac
from functools import wraps

from flask import Blueprint, current_app, jsonify, request

from cronvault.backup.executor import run_backup
from cronvault.models import BackupRun, record_run


bp = Blueprint('backup', __name__, url_prefix='/api/backup')


def _is_authorized() -> bool:
    """
    Check the trusted scheduler header or the bearer token.

    Without a configured CRON_SECRET every request is accepted.
    """
    cron_secret = current_app.config.get('CRON_SECRET')
    if not cron_secret:
        return True

    header_name = current_app.config.get('TRUSTED_CRON_HEADER') or 'X-Vercel-Cron'
    if request.headers.get(header_name) == '1':
        return True

    auth_header = request.headers.get('Authorization', '')
    return hmac.compare_digest(auth_header.encode(), f"Bearer {cron_secret}".encode())


def cron_auth_required(view):
    """Reject non-GET requests with 405 and unauthenticated ones with 401."""
    @wraps(view)
    def wrapper(*args, **kwargs):
        if request.method != 'GET':
            return jsonify({'error': 'Method not allowed'}), 405
        if not _is_authorized():
            return jsonify({'error': 'Unauthorized'}), 401
        return view(*args, **kwargs)
    return wrapper


@bp.route('/run', methods=['GET', 'POST', 'PUT', 'PATCH', 'DELETE'])
@cron_auth_required
def trigger_backup():
    """
    Run a backup synchronously.

    Returns:
        200 with the run result on success, 500 with the same shape on failure
    """
    current_app.logger.info("Backup triggered over HTTP")
    result = run_backup(current_app.config)
    record_run(result, 'http')

    return jsonify(result.to_dict()), 200 if result.success else 500


@bp.route('/history', methods=['GET', 'POST', 'PUT', 'PATCH', 'DELETE'])
@cron_auth_required
def list_runs():
    """
    Get recent backup runs, newest first.

    Query params:
        - status: Filter by status (success/failed)
        - limit: Max number of records (default: 20, max: 100)

    Returns:
        JSON with run records
    """
    status_filter = request.args.get('status')
    limit = request.args.get('limit', 20, type=int)

    # Enforce limits
    if limit > 100:
        limit = 100
    if limit < 1:
        limit = 1

    query = BackupRun.query

    if status_filter:
        if status_filter not in ['success', 'failed']:
            return jsonify({'error': 'Invalid status filter'}), 400
        query = query.filter(BackupRun.status == status_filter)

    runs = query.order_by(BackupRun.started_at.desc(), BackupRun.id.desc()).limit(limit).all()

    return jsonify({
        'records': [run.to_dict() for run in runs],
        'limit': limit
    })
