"""
Configuration module for the speech tasks backend.
Loads all environment variables needed by the lifecycle engine and handlers.
"""
import os


class Config:
    """Centralized configuration from environment variables."""

    # AWS Region
    AWS_REGION = os.environ.get('AWS_REGION', 'us-east-1')

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    # DynamoDB Tables
    TASKS_TABLE = os.environ.get('TASKS_TABLE', 'tasks')
    CONTRIBUTIONS_TABLE = os.environ.get('CONTRIBUTIONS_TABLE', 'contributions')
    VALIDATIONS_TABLE = os.environ.get('VALIDATIONS_TABLE', 'validations')
    PROJECTS_TABLE = os.environ.get('PROJECTS_TABLE', 'projects')
    PROJECT_MEMBERS_TABLE = os.environ.get('PROJECT_MEMBERS_TABLE', 'project_members')
    TASK_STATUS_HISTORY_TABLE = os.environ.get('TASK_STATUS_HISTORY_TABLE', 'task_status_history')
    FILE_METADATA_TABLE = os.environ.get('FILE_METADATA_TABLE', 'file_metadata')
    TASK_FILES_TABLE = os.environ.get('TASK_FILES_TABLE', 'task_files')
    UPLOAD_SESSIONS_TABLE = os.environ.get('UPLOAD_SESSIONS_TABLE', 'upload_sessions')

    # S3 Buckets
    MEDIA_BUCKET = os.environ.get('MEDIA_BUCKET', '')

    # Upload pipeline
    UPLOAD_MAX_RETRIES = int(os.environ.get('UPLOAD_MAX_RETRIES', '2'))
    UPLOAD_RETRY_DELAY_SECONDS = float(os.environ.get('UPLOAD_RETRY_DELAY_SECONDS', '1'))
    UPLOAD_SESSION_TTL_HOURS = int(os.environ.get('UPLOAD_SESSION_TTL_HOURS', '24'))
    MAX_FILE_SIZE_BYTES = int(os.environ.get('MAX_FILE_SIZE_BYTES', str(50 * 1024 * 1024)))
    PRESIGNED_URL_EXPIRATION = int(os.environ.get('PRESIGNED_URL_EXPIRATION', '3600'))

    # Batch operations
    BATCH_MAX_WORKERS = int(os.environ.get('BATCH_MAX_WORKERS', '8'))
    TASK_INSERT_BATCH_SIZE = int(os.environ.get('TASK_INSERT_BATCH_SIZE', '50'))

    @property
    def TABLES(self):
        """Logical table name -> physical DynamoDB table name."""
        return {
            'tasks': self.TASKS_TABLE,
            'contributions': self.CONTRIBUTIONS_TABLE,
            'validations': self.VALIDATIONS_TABLE,
            'projects': self.PROJECTS_TABLE,
            'project_members': self.PROJECT_MEMBERS_TABLE,
            'task_status_history': self.TASK_STATUS_HISTORY_TABLE,
            'file_metadata': self.FILE_METADATA_TABLE,
            'task_files': self.TASK_FILES_TABLE,
            'upload_sessions': self.UPLOAD_SESSIONS_TABLE,
        }


config = Config()
