"""
Update Task Status Handler.
Moves a single task along the status graph.
PUT /tasks/{taskId}/status
Body: { "status": "open", "metadata": {...} }
"""
from speechtasks.auth import get_user_sub
from speechtasks.logging import logger, log_event
from speechtasks.services import get_task_service
from speechtasks.utils import format_response, get_path_param, parse_body, response_for_result


def handler(event, context):
    log_event(event)

    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'error': 'Authentication required'})

    task_id = get_path_param(event, 'taskId')
    body = parse_body(event)
    status = body.get('status')
    if not task_id or not status:
        return format_response(400, {'error': 'Missing taskId or status'})

    try:
        if status == 'verified' and body.get('validationId'):
            result = get_task_service().mark_task_verified(task_id, body['validationId'], user_id)
        else:
            result = get_task_service().update_task_status(task_id, status, user_id, body.get('metadata'))
        return response_for_result(result)

    except Exception as e:
        logger.error(f"Error updating status of task {task_id}: {e}")
        return format_response(500, {'error': 'Failed to update task status', 'reason': str(e)})
