"""Pipeline stages and the schedulers that chain them."""

from mediagen.workers.recovery import resume_in_flight_jobs
from mediagen.workers.scheduler import HttpScheduler, InProcessScheduler
from mediagen.workers.stages import Stage, StageContext, run_stage

__all__ = [
    "HttpScheduler",
    "InProcessScheduler",
    "Stage",
    "StageContext",
    "resume_in_flight_jobs",
    "run_stage",
]
