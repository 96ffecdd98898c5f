"""
Grading Jobs Module.

Persisted whole-attempt grading runs and their live status streams.
"""

from gradeflow.jobs.channels import StatusChannelRegistry
from gradeflow.jobs.manager import GradingJobManager, JobNotFoundError
from gradeflow.jobs.stream import JobStatusStream

__all__ = [
    "GradingJobManager",
    "JobNotFoundError",
    "JobStatusStream",
    "StatusChannelRegistry",
]
