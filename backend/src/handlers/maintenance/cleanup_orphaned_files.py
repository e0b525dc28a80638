"""
Cleanup Orphaned Files Handler.
Triggered by EventBridge daily. Removes media that no contribution references.
Event: { "bucket": "...", "prefix": "projects/" }
"""
from speechtasks.config import config
from speechtasks.logging import logger
from speechtasks.services import get_pipeline


def handler(event, context):
    event = event or {}
    bucket = event.get('bucket') or config.MEDIA_BUCKET
    prefix = event.get('prefix', 'projects/')

    if not bucket:
        logger.error("No bucket configured for orphaned file cleanup")
        return {'message': 'No bucket configured'}

    result = get_pipeline().cleanup_orphaned_files(bucket, prefix)
    if not result['success']:
        return {'message': 'Cleanup failed', 'error': result['error']}

    logger.info(f"Orphaned file cleanup removed {result['data']['removed']} files")
    return {'message': f"Removed {result['data']['removed']} orphaned files", **result['data']}
