from awe_prwatch.domain.events import EventType, NewReviewPREvent, PRFeedbackEvent
from awe_prwatch.domain.models import (
    PR,
    AuthMethod,
    CheckRun,
    PRComment,
    PRFeedback,
    PRReview,
    PRWatch,
    RepoFilter,
    ReviewPRTask,
    ReviewScope,
    ReviewWatch,
    TaskPR,
)

__all__ = [
    'AuthMethod',
    'CheckRun',
    'EventType',
    'NewReviewPREvent',
    'PR',
    'PRComment',
    'PRFeedback',
    'PRFeedbackEvent',
    'PRReview',
    'PRWatch',
    'RepoFilter',
    'ReviewPRTask',
    'ReviewScope',
    'ReviewWatch',
    'TaskPR',
]
