"""
Content rules for submitted contributions.
Checks recordings and texts before anything is uploaded or written.

Rules carry a severity: failed 'error' rules make the submission invalid,
failed 'warning' rules are reported back but do not block it.
"""
import re
from typing import Any, Callable, Dict, List, Optional

from .logging import logger
from .models import TaskType
from .utils import text_similarity

# Size heuristics standing in for duration checks on raw recordings
MIN_AUDIO_BYTES = 1000             # ~1 second
MAX_AUDIO_BYTES = 10 * 1024 * 1024  # ~2 minutes
SILENT_AUDIO_BYTES = 5000

MIN_TEXT_LENGTH = 5
MAX_TEXT_LENGTH = 2000

# Translations at least this similar to their source count as copies
COPY_SIMILARITY_THRESHOLD = 0.95

ACCEPTED_AUDIO_TYPES = frozenset([
    'audio/wav', 'audio/x-wav', 'audio/wave', 'audio/webm', 'audio/ogg',
    'audio/mpeg', 'audio/mp4', 'audio/flac',
])

_HTML_TAG = re.compile(r'<[^>]*>')


class Severity:
    ERROR = 'error'
    WARNING = 'warning'


class ContentRule:
    """A named check with the message reported when it fails."""

    def __init__(self, rule_id: str, test: Callable[[Any, dict], bool], message: str,
                 severity: str = Severity.ERROR):
        self.rule_id = rule_id
        self.test = test
        self.message = message
        self.severity = severity


def _text(value) -> str:
    return str(value or '').strip()


AUDIO_RULES = [
    ContentRule(
        'audio-min-duration',
        lambda blob, ctx: len(blob) > ctx.get('min_bytes', MIN_AUDIO_BYTES),
        'Recording is too short (minimum 1 second)'
    ),
    ContentRule(
        'audio-max-duration',
        lambda blob, ctx: len(blob) < ctx.get('max_bytes', MAX_AUDIO_BYTES),
        'Recording is too long (maximum 2 minutes)'
    ),
    ContentRule(
        'audio-content-type',
        lambda blob, ctx: not ctx.get('content_type')
        or ctx['content_type'].split(';')[0].strip() in ACCEPTED_AUDIO_TYPES,
        'Unsupported audio format'
    ),
    ContentRule(
        'audio-not-silent',
        lambda blob, ctx: len(blob) > SILENT_AUDIO_BYTES,
        'Recording appears to be silent or nearly silent',
        Severity.WARNING
    ),
]

TEXT_RULES = [
    ContentRule(
        'text-not-empty',
        lambda text, ctx: len(_text(text)) > 0,
        'Text cannot be empty'
    ),
    ContentRule(
        'text-min-length',
        lambda text, ctx: len(_text(text)) >= ctx.get('min_length', MIN_TEXT_LENGTH),
        f'Text is too short (minimum {MIN_TEXT_LENGTH} characters)'
    ),
    ContentRule(
        'text-max-length',
        lambda text, ctx: len(_text(text)) <= ctx.get('max_length', MAX_TEXT_LENGTH),
        f'Text is too long (maximum {MAX_TEXT_LENGTH} characters)'
    ),
    ContentRule(
        'text-no-html',
        lambda text, ctx: not _HTML_TAG.search(str(text or '')),
        'Text contains HTML tags',
        Severity.WARNING
    ),
]

TRANSLATION_RULES = TEXT_RULES + [
    ContentRule(
        'translation-no-source-copy',
        lambda text, ctx: not ctx.get('source_text')
        or text_similarity(_text(text), _text(ctx['source_text'])) < COPY_SIMILARITY_THRESHOLD,
        'Translation should not be identical to source text',
        Severity.WARNING
    ),
]


def rules_for_task_type(task_type: str) -> List[ContentRule]:
    """Rules applicable to a task type. Validation tasks have none."""
    if task_type in TaskType.AUDIO:
        return AUDIO_RULES
    if task_type == TaskType.TRANSCRIPTION:
        return TEXT_RULES
    if task_type == TaskType.TRANSLATION:
        return TRANSLATION_RULES
    return []


def apply_rules(rules: List[ContentRule], value: Any, context: Optional[dict] = None) -> Dict[str, Any]:
    """
    Run rules against a value.

    Returns:
        dict: {'is_valid': bool, 'errors': [...], 'warnings': [...]}
    """
    context = context or {}
    errors = []
    warnings = []

    for rule in rules:
        try:
            passed = rule.test(value, context)
        except (TypeError, ValueError, AttributeError) as e:
            logger.error(f"Error applying content rule {rule.rule_id}: {e}")
            continue

        if not passed:
            if rule.severity == Severity.ERROR:
                errors.append(rule.message)
            else:
                warnings.append(rule.message)

    return {'is_valid': not errors, 'errors': errors, 'warnings': warnings}


def validate_audio(blob: bytes, context: Optional[dict] = None) -> Dict[str, Any]:
    if blob is None:
        return {'is_valid': False, 'errors': ['Recording is missing'], 'warnings': []}
    return apply_rules(AUDIO_RULES, blob, context)


def validate_text(text: str, context: Optional[dict] = None) -> Dict[str, Any]:
    return apply_rules(TEXT_RULES, text, context)


def validate_contribution(task_type: str, content: Any, context: Optional[dict] = None) -> Dict[str, Any]:
    """
    Validate the content of a contribution for a task type.

    Args:
        task_type: One of TaskType.ALL
        content: Recording bytes for asr/tts, text otherwise
        context: Optional overrides (content_type, source_text, min_length, ...)

    Returns:
        dict: {'is_valid': bool, 'errors': [...], 'warnings': [...]}
    """
    if task_type not in TaskType.ALL:
        return {'is_valid': False, 'errors': [f"Unsupported task type: {task_type}"], 'warnings': []}
    if task_type in TaskType.AUDIO:
        return validate_audio(content, context)
    return apply_rules(rules_for_task_type(task_type), content, context)
