"""
List Review Queue Handler.
Contributions waiting for the caller's review, oldest first.
GET /contributions/pending?projectId=...&limit=50
"""
from speechtasks.auth import get_user_sub
from speechtasks.logging import logger, log_event
from speechtasks.services import get_validation_workflow
from speechtasks.utils import format_response, get_query_param


def handler(event, context):
    log_event(event)

    reviewer_id = get_user_sub(event)
    if not reviewer_id:
        return format_response(401, {'error': 'Authentication required'})

    try:
        limit = int(get_query_param(event, 'limit', '50'))
    except ValueError:
        return format_response(400, {'error': 'limit must be an integer'})

    try:
        queue = get_validation_workflow().get_review_queue(
            reviewer_id, project_id=get_query_param(event, 'projectId'), limit=limit
        )
        return format_response(200, {'items': queue, 'total': len(queue)})

    except Exception as e:
        logger.error(f"Error listing review queue: {e}")
        return format_response(500, {'error': 'Failed to list pending reviews', 'reason': str(e)})
