from marketpulse.learning.accuracy import AccuracyStats, CategoryStats, summarize
from marketpulse.learning.outcomes import classify_move, evaluate, was_accurate
from marketpulse.learning.verification import VerificationScheduler, VerificationSummary

__all__ = [
    "AccuracyStats",
    "CategoryStats",
    "VerificationScheduler",
    "VerificationSummary",
    "classify_move",
    "evaluate",
    "summarize",
    "was_accurate",
]
