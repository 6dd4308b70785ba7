from __future__ import annotations

from dataclasses import asdict, dataclass, is_dataclass
from datetime import datetime
from enum import Enum

from awe_prwatch.domain.models import PR


class EventType(str, Enum):
    PR_FEEDBACK = 'github.pr_feedback'
    TASK_PR_UPDATED = 'github.task_pr_updated'
    NEW_REVIEW_PR = 'github.new_review_pr'


def normalize_event_type(value: str | EventType) -> str:
    if isinstance(value, EventType):
        return value.value
    text = str(value or '').strip().lower()
    if not text:
        return text
    try:
        return EventType(text).value
    except ValueError:
        return text


@dataclass(frozen=True)
class PRFeedbackEvent:
    session_id: str
    task_id: str
    owner: str
    repo: str
    pr_number: int
    new_comments: int
    checks_changed: bool
    new_check_status: str
    new_review_state: str


@dataclass(frozen=True)
class NewReviewPREvent:
    review_watch_id: str
    workspace_id: str
    workflow_id: str
    workflow_step_id: str
    agent_profile_id: str
    executor_profile_id: str
    prompt: str
    pr: PR


def event_payload(value: object) -> dict:
    """Flatten a payload dataclass into JSON-friendly primitives."""
    if is_dataclass(value) and not isinstance(value, type):
        raw = asdict(value)
    elif isinstance(value, dict):
        raw = dict(value)
    else:
        return {'value': value}
    return _jsonable(raw)


def _jsonable(value):
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value
