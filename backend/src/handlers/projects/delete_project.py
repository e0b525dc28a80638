"""
Delete Project Handler.
Deletes a project with all its tasks, contributions, validations, files and members.
Owner only.
DELETE /projects/{projectId}
"""
from speechtasks.auth import get_user_sub
from speechtasks.logging import logger, log_event
from speechtasks.services import get_cascade_deleter
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
        result = get_cascade_deleter().safely_delete(project_id, user_id)
        return response_for_result(result)
    except Exception as e:
        logger.error(f"Error deleting project {project_id}: {e}")
        return format_response(500, {'error': 'Failed to delete project', 'reason': str(e)})
