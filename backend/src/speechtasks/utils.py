"""
Common utility functions for the lifecycle engine and Lambda handlers.
"""
import base64
import binascii
import json
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

import Levenshtein

from .exceptions import LifecycleError
from .logging import log_result


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal types from DynamoDB."""

    def default(self, o):
        if isinstance(o, Decimal):
            # Convert to int if it's a whole number, otherwise float
            if o % 1 == 0:
                return int(o)
            return float(o)
        if isinstance(o, (set, frozenset)):
            return sorted(o)
        return super().default(o)


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def text_similarity(text1: str, text2: str) -> float:
    """
    Case-insensitive similarity ratio between two texts (0.0 - 1.0).

    Args:
        text1: First text to compare
        text2: Second text to compare

    Returns:
        Similarity ratio between 0.0 (completely different) and 1.0 (identical)
    """
    if not text1 and not text2:
        return 1.0
    if not text1 or not text2:
        return 0.0
    return Levenshtein.ratio(text1.lower(), text2.lower())


# =============================================================================
# RESULT OBJECTS
# =============================================================================

def success_result(data: Any = None) -> Dict[str, Any]:
    """Result object for a successful operation."""
    return {'success': True, 'data': data, 'error': None, 'code': None}


def failure_result(error: str, code: str = 'LifecycleError') -> Dict[str, Any]:
    """Result object for a failed operation. Always carries a readable reason."""
    return {'success': False, 'data': None, 'error': error, 'code': code}


def failure_from_exception(exc: Exception) -> Dict[str, Any]:
    """Convert an exception into a failure result."""
    if isinstance(exc, LifecycleError):
        return failure_result(exc.message, exc.code)
    return failure_result(str(exc) or exc.__class__.__name__, 'InternalError')


def batch_result(outcomes: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Aggregate per-item outcomes of a batch operation.

    Args:
        outcomes: Dicts with keys 'id', 'success' and (on failure) 'error'

    Returns:
        {successCount, failedCount, errors[], results{}}
    """
    success_count = 0
    failed_count = 0
    errors = []
    results = {}

    for outcome in outcomes:
        results[str(outcome['id'])] = outcome['success']
        if outcome['success']:
            success_count += 1
        else:
            failed_count += 1
            errors.append({
                'id': outcome['id'],
                'error': outcome.get('error') or 'Unknown error'
            })

    return {
        'successCount': success_count,
        'failedCount': failed_count,
        'errors': errors,
        'results': results
    }


def chunked(items: List[Any], size: int) -> List[List[Any]]:
    """Split a list into consecutive chunks of at most `size` items."""
    return [items[i:i + size] for i in range(0, len(items), size)]


# =============================================================================
# API GATEWAY HELPERS
# =============================================================================

def format_response(
    status_code: int,
    body: Any,
    headers: Dict[str, str] = None
) -> Dict[str, Any]:
    """
    Format a standard API Gateway response with CORS headers.

    Args:
        status_code: HTTP status code
        body: Response body (will be JSON serialized)
        headers: Additional headers to include

    Returns:
        API Gateway response dict
    """
    default_headers = {
        'Access-Control-Allow-Origin': '*',
        'Access-Control-Allow-Credentials': True,
        'Content-Type': 'application/json'
    }

    if headers:
        default_headers.update(headers)

    return {
        'statusCode': status_code,
        'headers': default_headers,
        'body': json.dumps(body, cls=DecimalEncoder)
    }


_CODE_TO_STATUS = {
    'InvalidTransition': 400,
    'PermissionDenied': 403,
    'NotFound': 404,
    'Conflict': 409,
    'IntegrityDrift': 409,
    'ValidationFailed': 422,
    'StorageFailure': 502,
}


def response_for_result(result: Dict[str, Any], success_status: int = 200) -> Dict[str, Any]:
    """Translate a result object into an API Gateway response."""
    if result.get('success'):
        status = success_status
    else:
        status = _CODE_TO_STATUS.get(result.get('code'), 500)
    log_result(result, status)
    return format_response(status, result)


def parse_body(event: dict) -> dict:
    """
    Safely parse JSON body from API Gateway event.

    Args:
        event: API Gateway Lambda proxy event

    Returns:
        Parsed body dict or empty dict if invalid
    """
    try:
        body = event.get('body') or '{}'
        if isinstance(body, str):
            return json.loads(body)
        return body or {}
    except (json.JSONDecodeError, TypeError):
        return {}


def decode_blob(encoded: Optional[str]) -> Optional[bytes]:
    """Decode a base64 audio payload from a request body."""
    if not encoded:
        return None
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        return None


def get_path_param(event: dict, param_name: str) -> str:
    """Extract path parameter from event."""
    try:
        return event['pathParameters'][param_name]
    except (KeyError, TypeError):
        return None


def get_query_param(event: dict, param_name: str, default: str = None) -> str:
    """Extract query string parameter from event."""
    try:
        params = event.get('queryStringParameters') or {}
        return params.get(param_name, default)
    except (KeyError, TypeError, AttributeError):
        return default
