"""
List Project Tasks Handler.
GET /projects/{projectId}/tasks?status=open,in_progress&type=asr&assignedTo=...&limit=50&offset=0
"""
from speechtasks.auth import get_user_sub
from speechtasks.logging import logger, log_event
from speechtasks.models import Action
from speechtasks.services import get_permission_gate, get_record_store, get_task_service
from speechtasks.utils import format_response, get_path_param, get_query_param


def _list_param(event, name):
    value = get_query_param(event, name)
    if not value:
        return None
    values = [v for v in value.split(',') if v]
    return values if len(values) > 1 else values[0]


def handler(event, context):
    log_event(event)

    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'error': 'Authentication required'})

    project_id = get_path_param(event, 'projectId')
    if not project_id:
        return format_response(400, {'error': 'Missing projectId'})

    try:
        limit = int(get_query_param(event, 'limit', '0')) or None
        offset = int(get_query_param(event, 'offset', '0'))
    except ValueError:
        return format_response(400, {'error': 'limit and offset must be integers'})

    try:
        project = get_record_store().get('projects', project_id)
        if not project:
            return format_response(404, {'error': 'Project not found'})
        if not get_permission_gate().check_permission(user_id, project, Action.VIEW):
            return format_response(403, {'error': 'You do not have permission to view this project'})

        tasks = get_task_service().get_project_tasks(
            project_id,
            status=_list_param(event, 'status'),
            task_type=_list_param(event, 'type'),
            assigned_to=get_query_param(event, 'assignedTo'),
            limit=limit,
            offset=offset,
            sort_by=get_query_param(event, 'sortBy'),
            descending=get_query_param(event, 'order', 'desc') != 'asc'
        )
        return format_response(200, {'tasks': tasks})

    except Exception as e:
        logger.error(f"Error listing tasks: {e}")
        return format_response(500, {'error': 'Failed to list tasks', 'reason': str(e)})
