from marketpulse.forecast.engine import PredictionEngine, PredictionResult
from marketpulse.forecast.scoring import (
    AlgorithmicScorer,
    LLMScorer,
    Scorer,
    ScoringInput,
    build_scorer,
)
from marketpulse.forecast.service import ForecastService, build_service

__all__ = [
    "AlgorithmicScorer",
    "ForecastService",
    "LLMScorer",
    "PredictionEngine",
    "PredictionResult",
    "Scorer",
    "ScoringInput",
    "build_scorer",
    "build_service",
]
