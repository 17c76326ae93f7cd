"""Live diagnostics aggregation service."""

from .aggregator import DiagnosticsAggregator
from .host import Locator
from .models import ChangeEvent, Position, Problem, ProblemSummary, Range, RelatedInformation
from .normalizer import normalize_problem
from .notifier import SubscriberNotifier
from .perf_monitor import OperationMonitor
from .service import DiagnosticsService

__all__ = [
    "ChangeEvent",
    "DiagnosticsAggregator",
    "DiagnosticsService",
    "Locator",
    "OperationMonitor",
    "Position",
    "Problem",
    "ProblemSummary",
    "Range",
    "RelatedInformation",
    "SubscriberNotifier",
    "normalize_problem",
]

__version__ = "0.1.0"
