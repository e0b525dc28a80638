"""
Lazily constructed lifecycle components shared by the Lambda handlers.
One instance of each per Lambda container, created on first use.
"""
from .cascade import ProjectCascadeDeleter
from .contributions import ContributionLifecycleManager
from .dynamo import RecordStore
from .integrity import IntegrityChecker
from .permissions import PermissionGate
from .projects import ProjectService
from .s3_utils import BlobStore
from .tasks import TaskService
from .transactions import TransactionCoordinator
from .upload_sessions import UploadSessionRegistry
from .uploads import FileUploadPipeline
from .validation import ValidationWorkflow

# Initialize components lazily
_record_store = None
_blob_store = None
_components = {}


def get_record_store() -> RecordStore:
    """Get or create the DynamoDB record store."""
    global _record_store
    if _record_store is None:
        _record_store = RecordStore()
    return _record_store


def get_blob_store() -> BlobStore:
    """Get or create the S3 blob store."""
    global _blob_store
    if _blob_store is None:
        _blob_store = BlobStore()
    return _blob_store


def _component(name, factory):
    if name not in _components:
        _components[name] = factory()
    return _components[name]


def get_permission_gate() -> PermissionGate:
    return _component('gate', lambda: PermissionGate(get_record_store()))


def get_coordinator() -> TransactionCoordinator:
    return _component('coordinator', lambda: TransactionCoordinator(get_record_store()))


def get_task_service() -> TaskService:
    return _component('tasks', lambda: TaskService(
        get_record_store(), get_permission_gate(), get_coordinator()
    ))


def get_pipeline() -> FileUploadPipeline:
    return _component('pipeline', lambda: FileUploadPipeline(
        get_record_store(), get_blob_store(), get_coordinator()
    ))


def get_lifecycle_manager() -> ContributionLifecycleManager:
    return _component('contributions', lambda: ContributionLifecycleManager(
        get_record_store(), get_permission_gate(), get_pipeline(), get_coordinator()
    ))


def get_validation_workflow() -> ValidationWorkflow:
    return _component('validation', lambda: ValidationWorkflow(
        get_record_store(), get_permission_gate(), get_coordinator()
    ))


def get_project_service() -> ProjectService:
    return _component('projects', lambda: ProjectService(
        get_record_store(), get_permission_gate(), get_coordinator()
    ))


def get_cascade_deleter() -> ProjectCascadeDeleter:
    return _component('cascade', lambda: ProjectCascadeDeleter(
        get_record_store(), get_blob_store(), get_permission_gate()
    ))


def get_integrity_checker() -> IntegrityChecker:
    return _component('integrity', lambda: IntegrityChecker(get_record_store()))


def get_upload_sessions() -> UploadSessionRegistry:
    return _component('upload_sessions', lambda: UploadSessionRegistry(
        get_record_store(), get_blob_store(), get_pipeline(), get_integrity_checker(), get_permission_gate()
    ))
