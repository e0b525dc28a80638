"""
Data models and status constants for the speech tasks platform.
Based on the task lifecycle: draft → open → in_progress → completed → verified, with
rejected/archived side branches.

Each entity has one closed set of statuses. Older workflow variants that still
show up in stored rows are mapped onto the closed set through LEGACY_MAP.
"""
from .exceptions import InvalidTransition


class TaskType:
    """Supported task types."""
    ASR = 'asr'
    TTS = 'tts'
    TRANSCRIPTION = 'transcription'
    TRANSLATION = 'translation'
    VALIDATION = 'validation'

    ALL = frozenset([ASR, TTS, TRANSCRIPTION, TRANSLATION, VALIDATION])
    AUDIO = frozenset([ASR, TTS])  # Contributions are recordings
    TEXT = frozenset([TRANSCRIPTION, TRANSLATION, VALIDATION])


class TaskStatus:
    """Task lifecycle statuses."""
    DRAFT = 'draft'
    OPEN = 'open'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    VERIFIED = 'verified'
    REJECTED = 'rejected'
    ARCHIVED = 'archived'

    ALL = frozenset([DRAFT, OPEN, IN_PROGRESS, COMPLETED, VERIFIED, REJECTED, ARCHIVED])
    ACCEPTING_CONTRIBUTIONS = frozenset([OPEN, IN_PROGRESS])

    # Extended workflow statuses written by older clients
    LEGACY_MAP = {
        'new': OPEN,
        'pending': OPEN,
        'assigned': IN_PROGRESS,
        'revision': IN_PROGRESS,
        'review': COMPLETED,
        'approved': VERIFIED,
        'cancelled': ARCHIVED,
    }


class ContributionStatus:
    """Contribution review statuses."""
    PENDING = 'pending'
    SUBMITTED = 'submitted'
    PENDING_VALIDATION = 'pending_validation'
    ACCEPTED = 'accepted'
    VALIDATED = 'validated'
    APPROVED_FOR_TRANSCRIPTION = 'approved_for_transcription'
    REJECTED = 'rejected'
    REJECTED_AUDIO = 'rejected_audio'

    ALL = frozenset([
        PENDING, SUBMITTED, PENDING_VALIDATION, ACCEPTED, VALIDATED,
        APPROVED_FOR_TRANSCRIPTION, REJECTED, REJECTED_AUDIO,
    ])
    REVIEWABLE = frozenset([PENDING, SUBMITTED, PENDING_VALIDATION])
    ACCEPTED_STATES = frozenset([ACCEPTED, VALIDATED, APPROVED_FOR_TRANSCRIPTION])
    REJECTED_STATES = frozenset([REJECTED, REJECTED_AUDIO])

    LEGACY_MAP = {
        'approved': VALIDATED,
        'completed': VALIDATED,
        'finalized': VALIDATED,
        'ready_for_transcription': APPROVED_FOR_TRANSCRIPTION,
        'in_transcription': APPROVED_FOR_TRANSCRIPTION,
        'pending_transcript_validation': PENDING_VALIDATION,
        'rejected_transcript': REJECTED,
    }


class ProjectStatus:
    """Project statuses. ARCHIVED doubles as the deletion lock."""
    DRAFT = 'draft'
    ACTIVE = 'active'
    COMPLETED = 'completed'
    ARCHIVED = 'archived'

    ALL = frozenset([DRAFT, ACTIVE, COMPLETED, ARCHIVED])


class ProjectRole:
    """Project membership roles."""
    OWNER = 'owner'
    ADMIN = 'admin'
    MANAGER = 'manager'
    REVIEWER = 'reviewer'
    CONTRIBUTOR = 'contributor'
    VALIDATOR = 'validator'

    ALL = frozenset([OWNER, ADMIN, MANAGER, REVIEWER, CONTRIBUTOR, VALIDATOR])
    REVIEWERS = frozenset([OWNER, ADMIN, MANAGER, REVIEWER, VALIDATOR])
    MEMBER_MANAGERS = frozenset([OWNER, ADMIN, MANAGER])


class Action:
    """Actions checked by the permission gate."""
    VIEW = 'view'
    EDIT = 'edit'
    DELETE = 'delete'
    TRANSITION = 'transition'
    ADD_MEMBER = 'add_member'
    REMOVE_MEMBER = 'remove_member'

    ALL = frozenset([VIEW, EDIT, DELETE, TRANSITION, ADD_MEMBER, REMOVE_MEMBER])


class UploadStage:
    """Stages reported by the upload pipeline."""
    PRE_UPLOAD = 'pre-upload'
    UPLOAD = 'upload'
    URL_GENERATION = 'url-generation'
    COMPLETE = 'complete'


class SessionFileStatus:
    """Status of a file inside an upload session."""
    PENDING = 'pending'
    UPLOADED = 'uploaded'
    COMMITTED = 'committed'
    FAILED = 'failed'

    ALL = frozenset([PENDING, UPLOADED, COMMITTED, FAILED])


def normalize_task_status(status: str) -> str:
    """Map a stored task status onto the closed TaskStatus set."""
    if status in TaskStatus.ALL:
        return status
    if status in TaskStatus.LEGACY_MAP:
        return TaskStatus.LEGACY_MAP[status]
    raise InvalidTransition(f"Unknown task status: {status}")


def normalize_contribution_status(status: str) -> str:
    """Map a stored contribution status onto the closed ContributionStatus set."""
    if status in ContributionStatus.ALL:
        return status
    if status in ContributionStatus.LEGACY_MAP:
        return ContributionStatus.LEGACY_MAP[status]
    raise ValueError(f"Unknown contribution status: {status}")


def contribution_key(task_id: str, user_id: str) -> str:
    """Row id of the single contribution a user may hold on a task."""
    return f"{task_id}#{user_id}"


def member_key(project_id: str, user_id: str) -> str:
    """Row id of a project membership."""
    return f"{project_id}#{user_id}"


def task_file_key(task_id: str, file_id: str) -> str:
    """Row id of a task/file link."""
    return f"{task_id}#{file_id}"


def derived_task_key(contribution_id: str) -> str:
    """Row id of the transcription task spawned from an approved recording."""
    return f"transcription-of-{contribution_id}"
