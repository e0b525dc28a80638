"""
Authentication utilities for extracting user info from Cognito tokens.
The lifecycle engine only ever sees the user sub as an opaque subject id.
"""
from typing import Optional


def get_user_sub(event: dict) -> Optional[str]:
    """
    Extract user sub (unique ID) from Cognito authorizer claims.

    Args:
        event: API Gateway Lambda proxy event

    Returns:
        User sub string or None if not authenticated
    """
    try:
        return event['requestContext']['authorizer']['claims']['sub']
    except (KeyError, TypeError):
        return None


def get_user_groups(event: dict) -> list:
    """Extract Cognito groups (e.g. admin) from the authorizer claims."""
    try:
        groups = event['requestContext']['authorizer']['claims'].get('cognito:groups', '')
        if isinstance(groups, str):
            return groups.split(',') if groups else []
        return groups or []
    except (KeyError, TypeError):
        return []


def is_admin(event: dict) -> bool:
    """Check if user belongs to the platform admin group."""
    return 'admin' in get_user_groups(event)


def get_user_email(event: dict) -> Optional[str]:
    """Extract user email from Cognito authorizer claims."""
    try:
        return event['requestContext']['authorizer']['claims'].get('email')
    except (KeyError, TypeError, AttributeError):
        return None
