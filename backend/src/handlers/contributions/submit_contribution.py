"""
Submit Contribution Handler.
POST /tasks/{taskId}/contributions
Body: {
    "submittedData": { "text": "..." },
    "audio": "<base64 recording, asr/tts only>",
    "contentType": "audio/wav"
}

A contributor whose earlier contribution was rejected resubmits through the
same route.
"""
from speechtasks.auth import get_user_sub
from speechtasks.logging import logger, log_event
from speechtasks.services import get_lifecycle_manager
from speechtasks.utils import decode_blob, format_response, get_path_param, parse_body, response_for_result


def handler(event, context):
    log_event(event)

    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'error': 'Authentication required'})

    task_id = get_path_param(event, 'taskId')
    if not task_id:
        return format_response(400, {'error': 'Missing taskId'})

    body = parse_body(event)
    blob = None
    if body.get('audio'):
        blob = decode_blob(body['audio'])
        if blob is None:
            return format_response(400, {'error': 'audio must be base64 encoded'})

    try:
        result = get_lifecycle_manager().submit_contribution(
            task_id,
            user_id,
            submitted_data=body.get('submittedData') or {},
            blob=blob,
            content_type=body.get('contentType')
        )
        return response_for_result(result, success_status=201)

    except Exception as e:
        logger.error(f"Error submitting contribution to task {task_id}: {e}")
        return format_response(500, {'error': 'Failed to submit contribution', 'reason': str(e)})
