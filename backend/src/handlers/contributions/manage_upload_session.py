"""
Upload Session Handler.
Multi-file uploads that are committed to a task or rolled back together.

POST /upload-sessions                              -> create
POST /upload-sessions/{sessionId}/files            -> upload one file (base64 body, key chosen server-side)
POST /upload-sessions/{sessionId}/commit           -> commit, optional taskId
POST /upload-sessions/{sessionId}/rollback         -> rollback
GET  /upload-sessions/{sessionId}                  -> fetch
"""
from speechtasks.auth import get_user_sub
from speechtasks.logging import logger, log_event
from speechtasks.services import get_upload_sessions
from speechtasks.utils import decode_blob, format_response, get_path_param, parse_body

_REFUSAL_STATUS = {'PermissionDenied': 403, 'NotFound': 404}


def _session_owned_by(session, user_id):
    return session and (session.get('metadata') or {}).get('user_id') == user_id


def handler(event, context):
    log_event(event)

    user_id = get_user_sub(event)
    if not user_id:
        return format_response(401, {'error': 'Authentication required'})

    registry = get_upload_sessions()
    session_id = get_path_param(event, 'sessionId')
    action = get_path_param(event, 'action')
    body = parse_body(event)

    try:
        if not session_id:
            metadata = dict(body.get('metadata') or {}, user_id=user_id)
            return format_response(201, {'sessionId': registry.create_session(metadata)})

        session = registry.get_session(session_id)
        if not _session_owned_by(session, user_id):
            return format_response(404, {'error': 'Upload session not found'})

        if event.get('httpMethod') == 'GET' or not action:
            return format_response(200, {'session': session})

        if action == 'files':
            blob = decode_blob(body.get('file'))
            if not blob:
                return format_response(400, {'error': 'A base64 file is required'})
            result = registry.upload_file(session_id, blob, body.get('contentType'), body.get('filename'))
            return format_response(201 if result['success'] else 502, result)

        if action == 'commit':
            result = registry.commit_session(session_id, body.get('taskId'))
        elif action == 'rollback':
            result = registry.rollback_session(session_id)
        else:
            return format_response(400, {'error': f"Unknown action: {action}"})

        if result['success']:
            return format_response(200, result)
        return format_response(_REFUSAL_STATUS.get(result.get('code'), 409), result)

    except Exception as e:
        logger.error(f"Error handling upload session {session_id}: {e}")
        return format_response(500, {'error': 'Upload session request failed', 'reason': str(e)})
