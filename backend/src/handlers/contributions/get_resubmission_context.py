"""
Get Resubmission Context Handler.
Returns the caller's previous submission for a task and the reviewer's comment.
GET /tasks/{taskId}/contributions/mine
"""
from speechtasks.auth import get_user_sub
from speechtasks.logging import logger, log_event
from speechtasks.services import get_lifecycle_manager
from speechtasks.utils import format_response, get_path_param, response_for_result


def handler(event, context):
    log_event(event)

    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'error': 'Authentication required'})

    task_id = get_path_param(event, 'taskId')
    if not task_id:
        return format_response(400, {'error': 'Missing taskId'})

    try:
        return response_for_result(get_lifecycle_manager().get_resubmission_context(task_id, user_id))
    except Exception as e:
        logger.error(f"Error loading resubmission context for task {task_id}: {e}")
        return format_response(500, {'error': 'Failed to load contribution', 'reason': str(e)})
