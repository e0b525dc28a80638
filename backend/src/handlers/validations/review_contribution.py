"""
Review Contribution Handler.
Approves or rejects a single contribution.
POST /contributions/{contributionId}/review
Body: { "approve": true, "comment": "...", "rating": 4 }
"""
from speechtasks.auth import get_user_sub
from speechtasks.logging import logger, log_event
from speechtasks.services import get_validation_workflow
from speechtasks.utils import format_response, get_path_param, parse_body, response_for_result


def handler(event, context):
    log_event(event)

    reviewer_id = get_user_sub(event)
    if not reviewer_id:
        return format_response(401, {'error': 'Authentication required'})

    contribution_id = get_path_param(event, 'contributionId')
    body = parse_body(event)
    if not contribution_id or 'approve' not in body:
        return format_response(400, {'error': 'Missing contributionId or approve'})

    try:
        result = get_validation_workflow().review(
            contribution_id,
            reviewer_id,
            bool(body['approve']),
            comment=body.get('comment'),
            rating=body.get('rating')
        )
        return response_for_result(result)

    except Exception as e:
        logger.error(f"Error reviewing contribution {contribution_id}: {e}")
        return format_response(500, {'error': 'Failed to review contribution', 'reason': str(e)})
