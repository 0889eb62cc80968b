"""
Railway-oriented result types for provider calls.

Keeps "the call did not happen" (Failure) apart from "the call happened and
the provider answered" (Success carrying a MethodResult, whatever its
ReturnValue).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Generic, Optional, TypeVar

from cmadmin.domain.models import MethodResult

T = TypeVar('T')
E = TypeVar('E')


@dataclass(frozen=True)
class Success(Generic[T]):
    """The remote call executed."""
    value: T
    metadata: dict[str, Any] | None = None
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.timestamp is None:
            object.__setattr__(self, 'timestamp', datetime.now())


@dataclass(frozen=True)
class Failure(Generic[E]):
    """The remote call did not execute."""
    error: E
    context: dict[str, Any] | None = None
    recoverable: bool = False
    retry_count: int = 0
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.timestamp is None:
            object.__setattr__(self, 'timestamp', datetime.now())


Result = Success[T] | Failure[E]


@dataclass(frozen=True)
class CallFailure:
    """Why a provider call did not execute."""
    kind: str  # 'configuration' | 'connection' | 'transport'
    message: str
    operation: str = ""
    host: str | None = None
    hresult: int | None = None


MethodOutcome = Result[MethodResult, CallFailure]
