"""Story generation polling and cache reconciliation."""

from storyclient.reconciliation.polling import (
    CancellationToken,
    Generation,
    PollOutcome,
    PollOutcomeKind,
    PollPolicy,
    PollState,
    classify,
)
from storyclient.reconciliation.engine import StoryEngine, StoryListView

__all__ = [
    "CancellationToken",
    "Generation",
    "PollOutcome",
    "PollOutcomeKind",
    "PollPolicy",
    "PollState",
    "classify",
    "StoryEngine",
    "StoryListView",
]
