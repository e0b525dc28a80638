"""
Get Project Handler.
Project details with task, contribution and member counts.
GET /projects/{projectId}
"""
from speechtasks.auth import get_user_sub
from speechtasks.logging import logger, log_event
from speechtasks.models import Action
from speechtasks.services import get_permission_gate, get_project_service
from speechtasks.utils import format_response, get_path_param, response_for_result


def handler(event, context):
    log_event(event)

    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'error': 'Authentication required'})

    project_id = get_path_param(event, 'projectId')
    if not project_id:
        return format_response(400, {'error': 'Missing projectId'})

    try:
        result = get_project_service().get_project_with_metrics(project_id)
        if result['success'] and not get_permission_gate().check_permission(
            user_id, result['data']['project'], Action.VIEW
        ):
            return format_response(403, {'error': 'You do not have permission to view this project'})
        return response_for_result(result)

    except Exception as e:
        logger.error(f"Error loading project {project_id}: {e}")
        return format_response(500, {'error': 'Failed to load project', 'reason': str(e)})
