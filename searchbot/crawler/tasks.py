"""
Messages exchanged between the coordinator and its workers.

Workers pull work: each sends a TaskRequest carrying the outcome of its last
task and a private reply queue, and the coordinator answers with exactly one
CrawlTask or StopSignal. Phrase verification tasks are handed to short-lived
workers directly and answered with a PhraseHit or None.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional, Tuple, Union


@dataclass(frozen=True)
class CrawlTask:
    """Fetch, analyze and index the URL at ``position``."""
    position: int


@dataclass(frozen=True)
class PhraseVerifyTask:
    """Fetch the URL at ``position`` and count phrase occurrences."""
    position: int
    phrases: Tuple[str, ...]
    match_all: bool = False


@dataclass(frozen=True)
class StopSignal:
    """No more work; the receiving worker exits."""
    reason: str = ""


Task = Union[CrawlTask, PhraseVerifyTask, StopSignal]


@dataclass(frozen=True)
class PhraseHit:
    """A page that passed phrase verification."""
    url: str
    rank: int


@dataclass(frozen=True)
class TaskRequest:
    """Worker is ready for its next task; ``success`` reports the previous one."""
    worker_id: str
    success: bool
    reply: "asyncio.Queue[Task]"


@dataclass(frozen=True)
class WorkerExited:
    """Posted when a worker task finishes, normally or not."""
    worker_id: str
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class HaltRequest:
    """Stop handing out work and tell busy workers to skip further writes."""
    reason: str


CoordinatorMessage = Union[TaskRequest, WorkerExited, HaltRequest]
