"""
List Available Tasks Handler.
Returns the tasks the caller can contribute to right now,
highest priority first.
GET /tasks/available?projectId=...&type=asr&limit=20
"""
from speechtasks.auth import get_user_sub
from speechtasks.logging import logger, log_event
from speechtasks.services import get_task_service
from speechtasks.utils import format_response, get_query_param


def handler(event, context):
    log_event(event)

    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'error': 'Authentication required'})

    try:
        limit = int(get_query_param(event, 'limit', '20'))
    except ValueError:
        return format_response(400, {'error': 'limit must be an integer'})

    try:
        tasks = get_task_service().get_available_tasks_for_user(
            user_id,
            project_id=get_query_param(event, 'projectId'),
            task_type=get_query_param(event, 'type'),
            limit=limit
        )
        return format_response(200, {'tasks': tasks, 'totalTasks': len(tasks)})

    except Exception as e:
        logger.error(f"Error listing available tasks: {e}")
        return format_response(500, {'error': 'Failed to list tasks', 'reason': str(e)})
