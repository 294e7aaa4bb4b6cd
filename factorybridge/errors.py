"""Error taxonomy and the recovery policy for best-effort inference calls.

Guidance, analysis, augmentation, report and chat calls are *recovered*: any
exception is logged and replaced with a fixed fallback. Long-running jobs are
not; their errors propagate to the caller (see ``jobs.JobPoller``).
"""
from __future__ import annotations

from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")


class FactoryBridgeError(RuntimeError):
    pass


class InvalidTransition(FactoryBridgeError):
    def __init__(self, operation: str, state: str):
        super().__init__(f"Cannot {operation} while session is {state}")
        self.operation = operation
        self.state = state


class ChatBusy(FactoryBridgeError):
    pass


class EmptyDataset(FactoryBridgeError):
    pass


class JobBusy(FactoryBridgeError):
    pass


class UnknownGoal(FactoryBridgeError):
    pass


async def recovered(call: Callable[[], Awaitable[T]], fallback: T, log, label: str) -> T:
    try:
        return await call()
    except Exception as exc:
        log.exception("%s failed, using fallback: %s", label, exc)
        return fallback
