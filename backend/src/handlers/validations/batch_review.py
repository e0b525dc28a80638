"""
Batch Review Handler.
Applies several review decisions; each one succeeds or fails on its own.
POST /contributions/review
Body: { "decisions": [{ "contributionId": "...", "approve": false, "comment": "..." }] }
"""
from speechtasks.auth import get_user_sub
from speechtasks.logging import logger, log_event
from speechtasks.services import get_validation_workflow
from speechtasks.utils import format_response, parse_body


def handler(event, context):
    log_event(event)

    reviewer_id = get_user_sub(event)
    if not reviewer_id:
        return format_response(401, {'error': 'Authentication required'})

    decisions = parse_body(event).get('decisions') or []
    if not decisions:
        return format_response(400, {'error': 'No decisions provided'})

    decisions = [
        {
            'contribution_id': d.get('contributionId'),
            'is_approved': bool(d.get('approve')),
            'comment': d.get('comment'),
            'rating': d.get('rating'),
        }
        for d in decisions
    ]

    try:
        result = get_validation_workflow().batch_review(decisions, reviewer_id)
    except Exception as e:
        logger.error(f"Error in batch review: {e}")
        return format_response(500, {'error': 'Batch review failed', 'reason': str(e)})

    return format_response(200, result)
