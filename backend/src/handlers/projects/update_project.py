"""
Update Project Handler.
PUT /projects/{projectId}
Body: any project settings, e.g. { "name": "...", "status": "active" }
"""
from speechtasks.auth import get_user_sub
from speechtasks.logging import logger, log_event
from speechtasks.services import get_project_service
from speechtasks.utils import format_response, get_path_param, parse_body, response_for_result


def handler(event, context):
    log_event(event)

    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'error': 'Authentication required'})

    project_id = get_path_param(event, 'projectId')
    if not project_id:
        return format_response(400, {'error': 'Missing projectId'})

    try:
        result = get_project_service().update_project_settings(project_id, parse_body(event), user_id)
        return response_for_result(result)
    except Exception as e:
        logger.error(f"Error updating project {project_id}: {e}")
        return format_response(500, {'error': 'Failed to update project', 'reason': str(e)})
