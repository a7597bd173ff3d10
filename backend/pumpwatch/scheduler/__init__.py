"""
scheduler — named recurring jobs with start / stop / restart / trigger control.
"""

from .job_scheduler import JobScheduler, JobState, RunRecord, parse_schedule

__all__ = [
    "JobScheduler",
    "JobState",
    "RunRecord",
    "parse_schedule",
]
