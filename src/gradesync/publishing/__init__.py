"""Grade publishing: state machine, transport and background queue."""

from .queue import DeferredTaskQueue, Job, TaskQueue, ThreadPoolTaskQueue
from .state_machine import PublishingStateMachine, status_translation
from .transport import BasePoster, DirectoryPoster, HttpSisPoster, SisPoster

__all__ = [
    "BasePoster",
    "DeferredTaskQueue",
    "DirectoryPoster",
    "HttpSisPoster",
    "Job",
    "PublishingStateMachine",
    "SisPoster",
    "TaskQueue",
    "ThreadPoolTaskQueue",
    "status_translation",
]
