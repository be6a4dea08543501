"""Data-quality scoring for the decay event stream."""
from .decay import DecayRateCheck, DecayRateValidator
from .drift import ClockDriftEstimator
from .gaps import GapAnalysis, SequenceGap, SequenceGapDetector
from .models import QualityReport, QualityStatus, StatusPolicy
from .monitor import QualityMonitor
from .penalties import Penalty, composite_score
from .scorer import QualityScorer
from .store import QualityReportStore

__all__ = [
    "ClockDriftEstimator",
    "DecayRateCheck",
    "DecayRateValidator",
    "GapAnalysis",
    "Penalty",
    "QualityMonitor",
    "QualityReport",
    "QualityReportStore",
    "QualityScorer",
    "QualityStatus",
    "SequenceGap",
    "SequenceGapDetector",
    "StatusPolicy",
    "composite_score",
]
