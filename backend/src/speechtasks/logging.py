"""
Logging for the lifecycle engine and Lambda handlers.

Everything logs through the single `speechtasks` logger; the level comes from
the LOG_LEVEL environment variable.
"""
import logging
import json
from typing import Any, Dict

from .config import config

logger = logging.getLogger('speechtasks')
logger.setLevel(getattr(logging, config.LOG_LEVEL.upper(), logging.INFO))

# Lambda reuses the interpreter between invocations
if not logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    logger.addHandler(handler)

_DROPPED_EVENT_KEYS = ('body', 'headers', 'multiValueHeaders')


def _redacted(event: dict) -> dict:
    safe_event = {k: v for k, v in event.items() if k not in _DROPPED_EVENT_KEYS}
    try:
        claims = event['requestContext']['authorizer']['claims']
    except (KeyError, TypeError):
        return safe_event
    # Only the subject id is kept from the Cognito claims
    context = dict(safe_event['requestContext'])
    context['authorizer'] = {'claims': {'sub': claims.get('sub')}}
    safe_event['requestContext'] = context
    return safe_event


def log_event(event: dict) -> None:
    """Log an incoming Lambda event without payloads, headers or personal claims."""
    try:
        logger.info(f"Lambda event: {json.dumps(_redacted(event), default=str)}")
    except (TypeError, ValueError, AttributeError) as e:
        logger.warning(f"Could not log event: {e}")


def log_result(result: Dict[str, Any], status_code: int) -> None:
    """Log the outcome of a result object on its way out of a handler."""
    if result.get('success'):
        logger.debug(f"Request succeeded ({status_code})")
    elif status_code >= 500:
        logger.error(f"Request failed ({status_code}, {result.get('code')}): {result.get('error')}")
    else:
        logger.warning(f"Request failed ({status_code}, {result.get('code')}): {result.get('error')}")
