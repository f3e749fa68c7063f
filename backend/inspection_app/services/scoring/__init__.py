"""Risk Scoring Engine"""
from .risk_engine import calculate_risk_score, score_recorded_responses, classify

__all__ = ["calculate_risk_score", "score_recorded_responses", "classify"]
