"""Monitoring engine: evaluation, alert policy, sweeps, and progress."""

from deal_sentinel.engine.evaluator import discount_percent, evaluate_price
from deal_sentinel.engine.poller import ProgressPoller, http_progress_source
from deal_sentinel.engine.policy import evaluate_alerts
from deal_sentinel.engine.progress import ProgressTracker
from deal_sentinel.engine.runner import ALREADY_RUNNING, BatchRunner
from deal_sentinel.engine.scheduler import SweepScheduler

__all__ = [
    "ALREADY_RUNNING",
    "BatchRunner",
    "ProgressPoller",
    "ProgressTracker",
    "SweepScheduler",
    "discount_percent",
    "evaluate_alerts",
    "evaluate_price",
    "http_progress_source",
]
