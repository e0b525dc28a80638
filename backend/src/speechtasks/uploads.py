"""
File upload pipeline: blob upload with retry, then contribution rows and the
task claim inside one compensated transaction.

The conditional task update is the only real concurrency guard. The
pre-checks run before anything is uploaded so that obvious duplicates never
cost an upload, but they can race. A duplicate that slips through is stopped
by the contribution's unique key, and the uploaded blob is removed by
compensation.
"""
import time
import uuid
from typing import Any, Callable, Dict, Optional

from .config import config
from .exceptions import Conflict, LifecycleError, NotFound, StorageFailure
from .logging import logger
from .models import (
    ContributionStatus, TaskStatus, UploadStage, contribution_key, normalize_task_status, task_file_key,
)
from .s3_utils import parse_storage_url
from .tasks import transition_task
from .utils import failure_from_exception, failure_result, now_iso, success_result

_EXTENSIONS = {
    'audio/wav': 'wav',
    'audio/x-wav': 'wav',
    'audio/wave': 'wav',
    'audio/webm': 'webm',
    'audio/ogg': 'ogg',
    'audio/mpeg': 'mp3',
    'audio/mp4': 'm4a',
    'audio/flac': 'flac',
}


def build_storage_path(project_id: str, task_id: str, user_id: str, content_type: str = None) -> str:
    """Object key for a new recording: projects/<project>/tasks/<task>/<user>-<uuid>.<ext>"""
    extension = _EXTENSIONS.get((content_type or '').split(';')[0].strip(), 'bin')
    return f"projects/{project_id}/tasks/{task_id}/{user_id}-{uuid.uuid4()}.{extension}"


def build_session_path(session_id: str, file_id: str, content_type: str = None) -> str:
    """Object key for a session upload: sessions/<session>/<file>.<ext>"""
    extension = _EXTENSIONS.get((content_type or '').split(';')[0].strip(), 'bin')
    return f"{session_prefix(session_id)}{file_id}.{extension}"


def session_prefix(session_id: str) -> str:
    return f"sessions/{session_id}/"


class FileUploadPipeline:
    """Uploads contribution media and records it together with the contribution."""

    def __init__(self, store, blobs, coordinator, sleep: Callable[[float], None] = time.sleep,
                 max_retries: int = None, retry_delay: float = None):
        self.store = store
        self.blobs = blobs
        self.coordinator = coordinator
        self.sleep = sleep
        self.max_retries = config.UPLOAD_MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = config.UPLOAD_RETRY_DELAY_SECONDS if retry_delay is None else retry_delay

    # -------------------------------------------------------------------------
    # Blob upload
    # -------------------------------------------------------------------------

    def upload_with_retry(self, bucket: str, path: str, blob: bytes, content_type: str = None) -> Dict[str, Any]:
        """
        Upload a blob, retrying with linear backoff.

        Args:
            bucket: Target bucket
            path: Object key
            blob: File contents
            content_type: MIME type stored with the object

        Returns:
            dict: {'success', 'stage', 'url', 'path', 'error'}; on failure
            `stage` is the last stage reached
        """
        stage = UploadStage.PRE_UPLOAD

        if not bucket or not path:
            return self._upload_result(False, stage, path, error='Bucket and path are required')
        if not blob:
            return self._upload_result(False, stage, path, error='File is empty')
        if len(blob) > config.MAX_FILE_SIZE_BYTES:
            return self._upload_result(
                False, stage, path,
                error=f"File exceeds the maximum size of {config.MAX_FILE_SIZE_BYTES} bytes"
            )

        last_error = None
        for attempt in range(self.max_retries + 1):
            if attempt > 0:
                delay = attempt * self.retry_delay
                logger.info(f"Retrying upload of {path} in {delay}s (attempt {attempt + 1})")
                self.sleep(delay)

            written = False
            try:
                stage = UploadStage.UPLOAD
                self.blobs.upload(bucket, path, blob, content_type)
                written = True

                stage = UploadStage.URL_GENERATION
                url = self.blobs.get_public_url(bucket, path)
                if not url:
                    raise StorageFailure(f"Could not generate a URL for {path}")

                return self._upload_result(True, UploadStage.COMPLETE, path, url=url)

            except StorageFailure as e:
                last_error = e.message
                logger.warning(f"Upload of {path} failed at stage {stage}: {last_error}")
                if written:
                    self._remove_quietly(bucket, path)

        logger.error(f"Upload of {path} failed after {self.max_retries + 1} attempts: {last_error}")
        return self._upload_result(False, stage, path, error=last_error)

    @staticmethod
    def _upload_result(success: bool, stage: str, path: str, url: str = None, error: str = None) -> Dict[str, Any]:
        return {'success': success, 'stage': stage, 'url': url, 'path': path, 'error': error}

    def _remove_quietly(self, bucket: str, path: str) -> None:
        """Best-effort delete; a failure leaves an orphan for cleanup_orphaned_files."""
        try:
            self.blobs.remove(bucket, [path])
        except StorageFailure as e:
            logger.error(f"Failed to remove blob {bucket}/{path}: {e}")

    # -------------------------------------------------------------------------
    # Contribution creation
    # -------------------------------------------------------------------------

    def check_preconditions(self, task_id: str, user_id: str) -> Dict[str, Any]:
        """
        Advisory checks made before anything is written.

        Returns:
            The task row as read

        Raises:
            NotFound, Conflict
        """
        task = self.store.get('tasks', task_id)
        if not task:
            raise NotFound(f"Task {task_id} not found")

        status = normalize_task_status(task.get('status'))
        if status not in TaskStatus.ACCEPTING_CONTRIBUTIONS:
            raise Conflict(f"Task is not accepting contributions (status: {status})")

        if task.get('completed_contribution_id') or self.store.count(
            'contributions',
            {'task_id': task_id, 'status': list(ContributionStatus.ACCEPTED_STATES)}
        ):
            raise Conflict('This task already has an accepted contribution')

        if self.store.get('contributions', contribution_key(task_id, user_id)):
            raise Conflict('You have already submitted a contribution for this task')

        return task

    def claim_task(self, tx, task: Dict[str, Any], user_id: str, contribution_id: str) -> Dict[str, Any]:
        """
        Conditionally move the task to in_progress for this contributor.

        An open task is assigned to the contributor; an in_progress task must
        still be assigned as it was when read.
        """
        values = {'current_contribution_id': contribution_id}
        if normalize_task_status(task['status']) == TaskStatus.OPEN:
            values['assigned_to'] = user_id
            expected = {'assigned_to': None}
        else:
            expected = {'assigned_to': task.get('assigned_to')}

        return transition_task(
            self.store, task, TaskStatus.IN_PROGRESS, user_id,
            notes=f"Contribution {contribution_id} submitted",
            values=values, expected=expected, tx=tx
        )

    def record_file(
        self,
        tx,
        task_id: str,
        contribution_id: str,
        bucket: str,
        path: str,
        url: str,
        content_type: str = None,
        size: int = None
    ) -> Dict[str, Any]:
        """Insert the file metadata row and its task link as compensated steps."""
        file_row = tx.step(
            f"insert file metadata for {path}",
            lambda: self.store.insert('file_metadata', {
                'id': str(uuid.uuid4()),
                'file_path': path,
                'bucket_name': bucket,
                'public_url': url,
                'task_id': task_id,
                'contribution_id': contribution_id,
                'content_type': content_type,
                'size': size,
                'uploaded_at': now_iso(),
            }),
            lambda row: self.store.delete('file_metadata', row['id'])
        )
        tx.step(
            f"link file {file_row['id']} to task {task_id}",
            lambda: self.store.insert('task_files', {
                'id': task_file_key(task_id, file_row['id']),
                'task_id': task_id,
                'file_id': file_row['id'],
                'created_at': now_iso(),
            }),
            lambda row: self.store.delete('task_files', row['id'])
        )
        return file_row

    def _build_contribution(self, draft: Dict[str, Any], url: str = None, path: str = None) -> Dict[str, Any]:
        timestamp = now_iso()
        contribution = {
            'id': contribution_key(draft['task_id'], draft['user_id']),
            'task_id': draft['task_id'],
            'user_id': draft['user_id'],
            'status': ContributionStatus.SUBMITTED,
            'submitted_data': draft.get('submitted_data') or {},
            'previous_submissions': [],
            'created_at': timestamp,
            'updated_at': timestamp,
        }
        if url:
            contribution['storage_url'] = url
            contribution['file_path'] = path
        return contribution

    def _record_contribution(
        self,
        tx,
        task: Dict[str, Any],
        contribution: Dict[str, Any],
        bucket: str = None,
        content_type: str = None,
        size: int = None
    ) -> Dict[str, Any]:
        tx.step(
            f"insert contribution {contribution['id']}",
            lambda: self.store.insert('contributions', contribution),
            lambda row: self.store.delete('contributions', row['id'])
        )

        file_row = None
        if contribution.get('storage_url'):
            file_row = self.record_file(
                tx, task['id'], contribution['id'], bucket,
                contribution['file_path'], contribution['storage_url'], content_type, size
            )

        updated_task = self.claim_task(tx, task, contribution['user_id'], contribution['id'])

        logger.info(f"Contribution {contribution['id']} recorded for task {task['id']}")
        return {'contribution': contribution, 'task': updated_task, 'file': file_row}

    def upload_and_create_contribution(
        self,
        bucket: str,
        path: str,
        blob: bytes,
        draft: Dict[str, Any],
        content_type: str = None
    ) -> Dict[str, Any]:
        """
        Upload a recording and create its contribution.

        Args:
            bucket: Media bucket
            path: Object key for the recording
            blob: Recording bytes
            draft: {'task_id', 'user_id', 'submitted_data'}
            content_type: MIME type of the recording

        Returns:
            {success, data, error, code}; data holds the contribution, the
            updated task and the file metadata row
        """
        try:
            task = self.check_preconditions(draft['task_id'], draft['user_id'])
        except LifecycleError as e:
            logger.info(f"Contribution to task {draft['task_id']} refused before upload: {e}")
            return failure_from_exception(e)

        upload = self.upload_with_retry(bucket, path, blob, content_type)
        if not upload['success']:
            result = failure_result(f"Upload failed at stage {upload['stage']}: {upload['error']}", 'StorageFailure')
            result['data'] = {'stage': upload['stage']}
            return result

        contribution = self._build_contribution(draft, url=upload['url'], path=path)

        def body(tx):
            # Registered first so it runs last, and only once
            tx.add_compensation(f"remove uploaded blob {path}", lambda: self.blobs.remove(bucket, [path]))
            return self._record_contribution(tx, task, contribution, bucket, content_type, len(blob))

        return self.coordinator.run_transaction(body)

    def create_contribution(self, draft: Dict[str, Any]) -> Dict[str, Any]:
        """Create a contribution that has no media (text submissions)."""
        try:
            task = self.check_preconditions(draft['task_id'], draft['user_id'])
        except LifecycleError as e:
            return failure_from_exception(e)

        contribution = self._build_contribution(draft)
        return self.coordinator.run_transaction(lambda tx: self._record_contribution(tx, task, contribution))

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def _referenced_paths(self, bucket: str) -> set:
        """
        Paths in `bucket` still in use: current and previous contribution
        recordings, files linked to a task or contribution, and files held
        by an upload session.
        """
        referenced = set()

        def add(path=None, storage_url=None):
            if path:
                referenced.add(path)
            parsed = parse_storage_url(storage_url)
            if parsed and parsed[0] == bucket:
                referenced.add(parsed[1])

        for contribution in self.store.select('contributions'):
            add(contribution.get('file_path'), contribution.get('storage_url'))
            for previous in contribution.get('previous_submissions') or []:
                add(previous.get('file_path'), previous.get('storage_url'))

        linked_files = {link['file_id'] for link in self.store.select('task_files')}
        for row in self.store.select('file_metadata', {'bucket_name': bucket}):
            if row['id'] in linked_files or row.get('contribution_id'):
                add(row.get('file_path'))

        # Sessions not yet committed or rolled back own their uploads
        for session in self.store.select('upload_sessions'):
            for f in session.get('files') or []:
                add(f.get('path'))

        return referenced

    def cleanup_orphaned_files(self, bucket: str, prefix: str = '') -> Dict[str, Any]:
        """
        Remove blobs under `prefix` that nothing references any more, together
        with their file metadata rows.
        """
        try:
            keys = self.blobs.list(bucket, prefix)
            if not keys:
                return success_result({'removed': 0, 'paths': []})

            referenced = self._referenced_paths(bucket)
            orphans = [key for key in keys if key not in referenced]
            if not orphans:
                return success_result({'removed': 0, 'paths': []})

            removed = self.blobs.remove(bucket, orphans)
            for path in orphans:
                for row in self.store.select('file_metadata', {'file_path': path, 'bucket_name': bucket}):
                    self.store.delete_where('task_files', {'file_id': row['id']})
                    self.store.delete('file_metadata', row['id'])

            logger.info(f"Removed {removed} orphaned files from {bucket}/{prefix}")
            return success_result({'removed': removed, 'paths': orphans})

        except LifecycleError as e:
            logger.error(f"Orphaned file cleanup failed for {bucket}/{prefix}: {e}")
            return failure_from_exception(e)
