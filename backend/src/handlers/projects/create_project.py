"""
Create Project Handler.
POST /projects
Body: { "name": "...", "source_language": "sw", "target_languages": ["en"], "status": "draft" }
"""
from speechtasks.auth import get_user_sub
from speechtasks.logging import logger, log_event
from speechtasks.services import get_project_service
from speechtasks.utils import format_response, parse_body, response_for_result


def handler(event, context):
    log_event(event)

    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'error': 'Authentication required'})

    body = parse_body(event)
    if not body:
        return format_response(400, {'error': 'Invalid JSON'})

    try:
        result = get_project_service().create_project_with_owner(body, user_id)
        return response_for_result(result, success_status=201)
    except Exception as e:
        logger.error(f"Error creating project: {e}")
        return format_response(500, {'error': 'Failed to create project', 'reason': str(e)})
