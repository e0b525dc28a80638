"""
Upload sessions: groups of files uploaded together and then committed to a
task or rolled back as a whole.

Sessions live in the upload_sessions table so any Lambda instance can resume
or roll back a session. Each row carries an `expires_at` epoch used by the
DynamoDB TTL and a `version` attribute; every change is a read-modify-write
conditioned on the version that was read.

Session files always go to the media bucket under sessions/<session_id>/ with
server-generated keys, and a session only ever deletes blobs under its own
prefix.
"""
import time
import uuid
from typing import Any, Callable, Dict, List, Optional

from .config import config
from .exceptions import Conflict, LifecycleError, NotFound, StorageFailure
from .logging import logger
from .models import Action, SessionFileStatus, task_file_key
from .permissions import PermissionGate
from .uploads import build_session_path, session_prefix
from .utils import now_iso

# Attempts at a versioned session write before giving up
MAX_SESSION_WRITE_ATTEMPTS = 5

# Metadata only the registry itself may set
RESERVED_METADATA_KEYS = ('bucket_name', 'task_id')


class UploadSessionRegistry:
    """Persisted registry of upload sessions."""

    def __init__(self, store, blobs, pipeline=None, integrity_checker=None, gate=None, bucket: str = None,
                 ttl_hours: int = None, clock: Callable[[], float] = time.time):
        self.store = store
        self.blobs = blobs
        self.pipeline = pipeline
        self.integrity_checker = integrity_checker
        self.gate = gate or PermissionGate(store)
        self.bucket = bucket or config.MEDIA_BUCKET
        self.ttl_hours = ttl_hours or config.UPLOAD_SESSION_TTL_HOURS
        self.clock = clock

    @staticmethod
    def owner_of(session: Dict[str, Any]) -> Optional[str]:
        return (session.get('metadata') or {}).get('user_id')

    def _mutate(self, session_id: str, change: Callable[[Dict[str, Any]], Dict[str, Any]]) -> Dict[str, Any]:
        """Apply `change` to the stored session, retrying when another writer got there first."""
        for _ in range(MAX_SESSION_WRITE_ATTEMPTS):
            session = self.get_session(session_id)
            if not session:
                raise NotFound('Upload session not found')

            values = change(session)
            version = int(session.get('version', 0))
            values['version'] = version + 1
            try:
                return self.store.update('upload_sessions', session_id, values, expected={'version': version})
            except Conflict:
                logger.info(f"Upload session {session_id} changed concurrently, retrying")

        raise Conflict(f"Upload session {session_id} is being modified concurrently")

    # -------------------------------------------------------------------------
    # Session bookkeeping
    # -------------------------------------------------------------------------

    def create_session(self, metadata: Optional[Dict[str, Any]] = None) -> str:
        """Create an empty session and return its id."""
        started_at = int(self.clock())
        session = {
            'id': str(uuid.uuid4()),
            'started_at': started_at,
            'expires_at': started_at + self.ttl_hours * 3600,
            'files': [],
            'metadata': {k: v for k, v in (metadata or {}).items() if k not in RESERVED_METADATA_KEYS},
            'version': 0,
            'created_at': now_iso(),
        }
        self.store.insert('upload_sessions', session)
        logger.info(f"Created upload session {session['id']}")
        return session['id']

    def get_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        """The session, or None if it does not exist or has expired."""
        session = self.store.get('upload_sessions', session_id)
        if not session:
            return None
        if int(session.get('expires_at', 0)) <= self.clock():
            return None
        return session

    def register_file(self, session_id: str, path: str, file_id: str = None) -> str:
        """Add a pending file to the session. Returns the file id."""
        file_id = file_id or str(uuid.uuid4())

        def add(session):
            files = list(session.get('files') or [])
            files.append({'id': file_id, 'path': path, 'status': SessionFileStatus.PENDING})
            return {'files': files}

        self._mutate(session_id, add)
        return file_id

    def mark_file(self, session_id: str, file_id: str, status: str) -> Dict[str, Any]:
        """Set the status of a file in the session."""
        if status not in SessionFileStatus.ALL:
            raise ValueError(f"Unknown file status: {status}")

        def update(session):
            files = [dict(f) for f in session.get('files') or []]
            matched = [f for f in files if f['id'] == file_id]
            if not matched:
                raise NotFound(f"File {file_id} is not part of session {session_id}")
            for f in matched:
                f['status'] = status
            return {'files': files}

        return self._mutate(session_id, update)

    def upload_file(self, session_id: str, blob: bytes, content_type: str = None,
                    filename: str = None) -> Dict[str, Any]:
        """
        Upload a file as part of a session and record its metadata.

        The object key is generated here; `filename` is only kept as
        metadata.

        Returns:
            dict: {'success', 'file_id', 'path', 'url', 'error'}
        """
        session = self.get_session(session_id)
        if not session:
            return {'success': False, 'file_id': None, 'path': None, 'url': None,
                    'error': 'Upload session not found'}

        file_id = str(uuid.uuid4())
        path = build_session_path(session_id, file_id, content_type)
        self.register_file(session_id, path, file_id)
        upload = self.pipeline.upload_with_retry(self.bucket, path, blob, content_type)
        if not upload['success']:
            self.mark_file(session_id, file_id, SessionFileStatus.FAILED)
            return {'success': False, 'file_id': file_id, 'path': path, 'url': None, 'error': upload['error']}

        self.store.insert('file_metadata', {
            'id': file_id,
            'file_path': path,
            'bucket_name': self.bucket,
            'public_url': upload['url'],
            'content_type': content_type,
            'original_name': filename,
            'size': len(blob),
            'user_id': self.owner_of(session),
            'uploaded_at': now_iso(),
        })
        self.mark_file(session_id, file_id, SessionFileStatus.UPLOADED)
        return {'success': True, 'file_id': file_id, 'path': path, 'url': upload['url'], 'error': None}

    # -------------------------------------------------------------------------
    # Commit / rollback
    # -------------------------------------------------------------------------

    def commit_session(self, session_id: str, task_id: str = None) -> Dict[str, Any]:
        """
        Commit all uploaded files of a session, optionally linking them to a task.

        Refuses while any file is pending or failed, and refuses to link to a
        task the session owner may not edit. Missing file_metadata rows are
        recreated, and the task's integrity is checked afterwards.

        Returns:
            dict: {'success', 'message'}
        """
        session = self.get_session(session_id)
        if not session:
            return {'success': False, 'message': 'Upload session not found'}

        if task_id:
            task = self.store.get('tasks', task_id)
            if not task:
                return {'success': False, 'message': f"Task {task_id} not found", 'code': 'NotFound'}
            if not self.gate.check_permission(self.owner_of(session), task, Action.EDIT):
                logger.warning(f"Upload session {session_id} may not be committed to task {task_id}")
                return {'success': False, 'message': 'You do not have permission to edit this task',
                        'code': 'PermissionDenied'}

        files = session.get('files') or []
        pending = [f for f in files if f['status'] == SessionFileStatus.PENDING]
        failed = [f for f in files if f['status'] == SessionFileStatus.FAILED]
        if pending:
            return {'success': False, 'message': f"Cannot commit - {len(pending)} files still uploading"}
        if failed:
            return {'success': False, 'message': f"Cannot commit - {len(failed)} files failed to upload"}

        bucket = self.bucket
        owner = self.owner_of(session)
        uploaded = [f for f in files if f['status'] == SessionFileStatus.UPLOADED]

        try:
            for f in uploaded:
                if not self.store.get('file_metadata', f['id']):
                    row = {
                        'id': f['id'],
                        'file_path': f['path'],
                        'bucket_name': bucket,
                        'public_url': self.blobs.get_public_url(bucket, f['path']),
                        'user_id': owner,
                        'uploaded_at': now_iso(),
                    }
                    if task_id:
                        row['task_id'] = task_id
                    self.store.insert('file_metadata', row)
                    logger.info(f"Recreated missing metadata for file {f['id']}")

                if task_id:
                    try:
                        self.store.insert('task_files', {
                            'id': task_file_key(task_id, f['id']),
                            'task_id': task_id,
                            'file_id': f['id'],
                            'created_at': now_iso(),
                        })
                    except Conflict:
                        pass  # already linked

            committed_ids = {f['id'] for f in uploaded}

            def commit(current):
                updated = []
                for f in current.get('files') or []:
                    f = dict(f)
                    if f['id'] in committed_ids:
                        f['status'] = SessionFileStatus.COMMITTED
                    updated.append(f)
                values = {'files': updated}
                if task_id:
                    values['metadata'] = dict(current.get('metadata') or {}, task_id=task_id)
                return values

            self._mutate(session_id, commit)

        except LifecycleError as e:
            logger.error(f"Error committing upload session {session_id}: {e}")
            return {'success': False, 'message': e.message}

        if task_id and self.integrity_checker is not None:
            integrity = self.integrity_checker.ensure_integrity(task_id)
            if not integrity['success']:
                logger.warning(f"Task integrity check after upload failed: {integrity['message']}")
            elif integrity['repaired']:
                logger.info(f"Task {task_id} integrity repaired after upload")

        return {'success': True, 'message': f"Successfully committed {len(uploaded)} files"}

    def rollback_session(self, session_id: str) -> Dict[str, Any]:
        """
        Delete every uploaded or committed file of the session together with
        its metadata and task links, then drop the session.
        """
        session = self.store.get('upload_sessions', session_id)
        if not session:
            return {'success': False, 'message': 'Upload session not found'}

        task_id = (session.get('metadata') or {}).get('task_id')
        prefix = session_prefix(session_id)
        stored = [
            f for f in session.get('files') or []
            if f['status'] in (SessionFileStatus.UPLOADED, SessionFileStatus.COMMITTED)
        ]

        try:
            for f in stored:
                if not f['path'].startswith(prefix):
                    logger.warning(f"Not deleting {f['path']}: outside upload session {session_id}")
                    continue
                try:
                    self.blobs.remove(self.bucket, [f['path']])
                except StorageFailure as e:
                    logger.error(f"Error deleting file {f['id']}: {e}")

                self.store.delete('file_metadata', f['id'])
                if task_id:
                    self.store.delete('task_files', task_file_key(task_id, f['id']))

            self.store.delete('upload_sessions', session_id)

        except LifecycleError as e:
            logger.error(f"Error rolling back upload session {session_id}: {e}")
            return {'success': False, 'message': e.message}

        return {'success': True, 'message': f"Successfully rolled back {len(stored)} files"}

    def cleanup_stale_sessions(self, max_age_hours: int = None) -> List[str]:
        """
        Drop sessions older than `max_age_hours` that have no pending files.
        Returns the ids of the removed sessions.
        """
        max_age_hours = max_age_hours or self.ttl_hours
        cutoff = self.clock() - max_age_hours * 3600

        removed = []
        for session in self.store.select('upload_sessions'):
            if int(session.get('started_at', 0)) > cutoff:
                continue
            if any(f['status'] == SessionFileStatus.PENDING for f in session.get('files') or []):
                continue
            if self.store.delete('upload_sessions', session['id']):
                removed.append(session['id'])

        if removed:
            logger.info(f"Removed {len(removed)} stale upload sessions")
        return removed
