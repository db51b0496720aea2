"""
Sync API - status, log, snapshot and cycle control
"""
from flask import Blueprint, Response, current_app, request, stream_with_context

from ..middleware import require_auth
from ..models import snapshot_to_dict
from ..services.sync.errors import CycleInProgressError
from ..utils.logger import get_logger
from ..utils.responses import ApiResponse, success_response
from ..utils.validators import parse_bool_flag, validate_limit

sync_bp = Blueprint('sync', __name__)
logger = get_logger('api.sync')


def _service():
    """SyncService attached to the app by create_app()"""
    return current_app.extensions['airsync']


@sync_bp.route('/sync/status', methods=['GET'])
def get_status():
    """
    Current sync status

    Returns the latest status event (null before the first cycle) together
    with the running flag, cursor, per-table counts and queue stats.
    """
    service = _service()
    event = service.status
    data = service.get_stats()
    data['status'] = event.to_dict() if event else None
    return success_response(data)


@sync_bp.route('/sync/log', methods=['GET'])
def get_log():
    """
    Status log, newest first

    Query parameters:
    - collapsed: 1 for the collapsed view (updates, success, errored, reset)
    - limit: maximum number of entries
    """
    collapsed = parse_bool_flag(request.args.get('collapsed'))
    ok, err, limit = validate_limit(request.args.get('limit'))
    if not ok:
        return ApiResponse.validation_error(err)

    service = _service()
    events = service.collapsed_log if collapsed else service.log.events()
    if limit is not None:
        events = events[:limit]

    return success_response({
        'collapsed': collapsed,
        'count': len(events),
        'events': [event.to_dict() for event in events],
    })


@sync_bp.route('/sync/snapshot', methods=['GET'])
def get_snapshot():
    """
    Merged records per table key

    Query parameters:
    - table: restrict to one table key (404 if unknown)
    """
    snapshot = _service().snapshot
    table = request.args.get('table')

    if table:
        if table not in snapshot:
            return ApiResponse.not_found(f'Unknown table key: {table}')
        snapshot = {table: snapshot[table]}

    return success_response({
        'tables': snapshot_to_dict(snapshot),
        'counts': {key: len(records) for key, records in snapshot.items()},
    })


@sync_bp.route('/sync/fetch', methods=['POST'])
@require_auth
def start_fetch():
    """Start a fetch cycle in the background"""
    service = _service()
    try:
        service.start_background_cycle()
    except CycleInProgressError as e:
        return ApiResponse.conflict(str(e), 'CYCLE_IN_PROGRESS')

    logger.info("[SyncAPI] Fetch cycle started")
    return ApiResponse.accepted({'running': True}, 'Fetch cycle started')


@sync_bp.route('/sync/reset', methods=['POST'])
@require_auth
def request_reset():
    """Discard snapshot and cursor at the start of the next cycle"""
    service = _service()
    service.request_reset()
    return success_response({'reset_requested': service.reset_requested}, 'Reset requested')


@sync_bp.route('/sync/state', methods=['GET'])
@require_auth
def export_state():
    """Restorable state bundle, see SyncState"""
    return success_response(_service().export_state().to_dict())


@sync_bp.route('/sync/stream', methods=['GET'])
def stream_status():
    """
    SSE endpoint - live status and progress

    Frames:
        event: status
        data: {"uid": 12, "type": "fetching", "at": "...", "data": null}

        event: progress
        data: 250
    """
    broadcaster = _service().broadcaster
    client_id, generator = broadcaster.subscribe_stream()

    def generate():
        yield f"event: connected\ndata: {{\"client_id\": \"{client_id}\"}}\n\n"
        yield from generator

    return Response(
        stream_with_context(generate()),
        mimetype='text/event-stream',
        headers={
            'Cache-Control': 'no-cache',
            'Connection': 'keep-alive',
            'X-Accel-Buffering': 'no',
        }
    )
