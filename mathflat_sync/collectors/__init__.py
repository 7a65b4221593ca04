"""Collection phases: daily activity, homework, and wrong-answer detail."""

from mathflat_sync.collectors.chain import ChainOrchestrator, HopOutcome, follow_chain, run_hop
from mathflat_sync.collectors.daily_work import DailyWorkCollector
from mathflat_sync.collectors.homework import HomeworkCollector
from mathflat_sync.collectors.problem_details import ProblemDetailCollector

__all__ = [
    "ChainOrchestrator",
    "DailyWorkCollector",
    "HomeworkCollector",
    "HopOutcome",
    "ProblemDetailCollector",
    "follow_chain",
    "run_hop",
]
