"""
Create Task Batch Handler.
Creates draft tasks for a project in chunks, one emulated transaction per chunk.
POST /projects/{projectId}/tasks
Body: { "tasks": [{ "type": "asr", "title": "...", ... }] }
"""
from speechtasks.auth import get_user_sub
from speechtasks.logging import logger, log_event
from speechtasks.services import get_task_service
from speechtasks.utils import format_response, get_path_param, parse_body


def handler(event, context):
    log_event(event)

    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'error': 'Authentication required'})

    body = parse_body(event)
    tasks_data = body.get('tasks', [])
    if not tasks_data:
        return format_response(400, {'error': 'No tasks provided'})

    project_id = get_path_param(event, 'projectId') or body.get('projectId')
    if project_id:
        tasks_data = [dict(task, project_id=project_id) for task in tasks_data]

    try:
        result = get_task_service().batch_insert_tasks(tasks_data, user_id)
    except Exception as e:
        logger.error(f"Error creating task batch: {e}")
        return format_response(500, {'error': 'Failed to save tasks', 'reason': str(e)})

    if result['failedCount'] and not result['successCount']:
        return format_response(400, result)

    result['message'] = f"Created {result['successCount']} tasks"
    return format_response(201 if not result['failedCount'] else 207, result)
