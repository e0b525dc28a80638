"""
Batch Update Status Handler.
Updates the status of many tasks independently; reports per-task results.
POST /tasks/status
Body: { "taskIds": [...], "status": "archived" }
"""
from speechtasks.auth import get_user_sub
from speechtasks.logging import logger, log_event
from speechtasks.services import get_task_service
from speechtasks.utils import format_response, parse_body


def handler(event, context):
    log_event(event)

    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'error': 'Authentication required'})

    body = parse_body(event)
    task_ids = body.get('taskIds') or []
    status = body.get('status')
    if not task_ids or not status:
        return format_response(400, {'error': 'Missing taskIds or status'})

    try:
        result = get_task_service().batch_update_task_status(task_ids, status, user_id)
    except Exception as e:
        logger.error(f"Error in batch status update: {e}")
        return format_response(500, {'error': 'Batch update failed', 'reason': str(e)})

    return format_response(200, result)
