"""
Manage Project Members Handler.
GET    /projects/{projectId}/members
POST   /projects/{projectId}/members              Body: { "userId": "...", "role": "contributor" }
DELETE /projects/{projectId}/members/{userId}
"""
from speechtasks.auth import get_user_sub
from speechtasks.logging import logger, log_event
from speechtasks.models import Action
from speechtasks.services import get_permission_gate, get_project_service, get_record_store
from speechtasks.utils import format_response, get_path_param, parse_body, response_for_result


def handler(event, context):
    log_event(event)

    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'error': 'Authentication required'})

    project_id = get_path_param(event, 'projectId')
    if not project_id:
        return format_response(400, {'error': 'Missing projectId'})

    method = event.get('httpMethod', 'GET')
    projects = get_project_service()

    try:
        if method == 'GET':
            project = get_record_store().get('projects', project_id)
            if not project:
                return format_response(404, {'error': 'Project not found'})
            if not get_permission_gate().check_permission(user_id, project, Action.VIEW):
                return format_response(403, {'error': 'You do not have permission to view this project'})
            return format_response(200, {'members': projects.list_members(project_id)})

        if method == 'POST':
            body = parse_body(event)
            if not body.get('userId') or not body.get('role'):
                return format_response(400, {'error': 'Missing userId or role'})
            result = projects.add_member(project_id, body['userId'], body['role'], user_id)
            return response_for_result(result, success_status=201)

        if method == 'DELETE':
            member_id = get_path_param(event, 'userId')
            if not member_id:
                return format_response(400, {'error': 'Missing userId'})
            return response_for_result(projects.remove_member(project_id, member_id, user_id))

        return format_response(405, {'error': f"Method {method} not allowed"})

    except Exception as e:
        logger.error(f"Error managing members of project {project_id}: {e}")
        return format_response(500, {'error': 'Failed to manage members', 'reason': str(e)})
