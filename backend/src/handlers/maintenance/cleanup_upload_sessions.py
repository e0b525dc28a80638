"""
Cleanup Upload Sessions Handler.
Triggered by EventBridge every hour. Drops upload sessions older than the TTL
that have no pending files. DynamoDB TTL removes expired rows eventually; this
keeps the table tidy in between.
"""
from speechtasks.config import config
from speechtasks.logging import logger
from speechtasks.services import get_upload_sessions


def handler(event, context):
    max_age_hours = int((event or {}).get('maxAgeHours') or config.UPLOAD_SESSION_TTL_HOURS)
    logger.info(f"Cleaning up upload sessions older than {max_age_hours}h")

    try:
        removed = get_upload_sessions().cleanup_stale_sessions(max_age_hours)
    except Exception as e:
        logger.error(f"Error cleaning up upload sessions: {e}")
        return {'message': 'Cleanup failed', 'error': str(e)}

    return {'message': f"Removed {len(removed)} stale upload sessions", 'removed': removed}
