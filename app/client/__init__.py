"""Async client for the generation relay."""

from .poller import JobController, JobSettlement, PollPolicy
from .restorer import RestoredUiState, StateRestorer
from .session import GenerationSession
from .transport import CoordinatorTransport, HttpTransport, InProcessTransport, RestoredJobs

__all__ = ["CoordinatorTransport", "GenerationSession", "HttpTransport", "InProcessTransport", "JobController", "JobSettlement", "PollPolicy", "RestoredJobs", "RestoredUiState", "StateRestorer"]
