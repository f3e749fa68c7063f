"""
Risk Scoring Engine

Pure function from (responses, catalog, thresholds) to a RiskScoreResult.
No persistence, no clock, no randomness: identical inputs give identical
output, and response order never changes the totals.

Rules:
- Only NO responses count. YES and NA contribute nothing.
- A NO for an indicator missing from the catalog is skipped.
- Classification: high_risk_count >= high_risk_indicator_threshold forces
  HIGH. Otherwise score bands: <= low max LOW, <= medium max MEDIUM, else HIGH.
"""
from typing import Dict, Iterable, List, Optional

from ...models.db_models import RiskLevel, ResponseValue
from ...models.domain import (
    Indicator, Pillar, ThresholdConfig, IndicatorResponse, RecordedResponse,
    Deviation, RiskScoreResult,
)

UNKNOWN_PILLAR = "Unknown"


def classify(total_score: float, high_risk_count: int, thresholds: ThresholdConfig) -> RiskLevel:
    """Map score and high-risk count to a classification band."""
    if high_risk_count >= thresholds.high_risk_indicator_threshold:
        return RiskLevel.HIGH
    if total_score <= thresholds.low_risk_max_score:
        return RiskLevel.LOW
    if total_score <= thresholds.medium_risk_max_score:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


def _tally(deviations: List[Deviation], thresholds: ThresholdConfig) -> RiskScoreResult:
    total_score = 0.0
    counts = {RiskLevel.HIGH: 0, RiskLevel.MEDIUM: 0, RiskLevel.LOW: 0}
    for deviation in deviations:
        total_score += deviation.weight
        counts[deviation.risk_level] += 1

    return RiskScoreResult(
        total_score=total_score,
        high_risk_count=counts[RiskLevel.HIGH],
        medium_risk_count=counts[RiskLevel.MEDIUM],
        low_risk_count=counts[RiskLevel.LOW],
        risk_classification=classify(total_score, counts[RiskLevel.HIGH], thresholds),
        deviations=tuple(deviations),
    )


def calculate_risk_score(
    responses: Iterable[IndicatorResponse],
    indicators: Iterable[Indicator],
    pillars: Iterable[Pillar],
    thresholds: Optional[ThresholdConfig] = None,
) -> RiskScoreResult:
    """
    Score a (possibly partial) response set against a catalog.

    Args:
        responses: Officer answers, any order
        indicators: Catalog indicators to look answers up in
        pillars: Pillars, used only for deviation pillar names
        thresholds: Classification bands (defaults when None)

    Returns:
        RiskScoreResult; deviations follow the input order of NO responses
    """
    thresholds = thresholds or ThresholdConfig()
    indicator_map: Dict[str, Indicator] = {i.id: i for i in indicators}
    pillar_names: Dict[str, str] = {p.id: p.name for p in pillars}

    deviations: List[Deviation] = []
    for response in responses:
        if response.response != ResponseValue.NO:
            continue
        indicator = indicator_map.get(response.indicator_id)
        if indicator is None:
            continue
        deviations.append(Deviation(
            indicator_id=indicator.id,
            indicator_name=indicator.name,
            pillar_name=pillar_names.get(indicator.pillar_id, UNKNOWN_PILLAR),
            risk_level=indicator.risk_level,
            weight=indicator.weight,
            remarks=response.remarks,
        ))

    return _tally(deviations, thresholds)


def score_recorded_responses(
    records: Iterable[RecordedResponse],
    thresholds: ThresholdConfig,
) -> RiskScoreResult:
    """
    Score persisted responses from their own snapshot of indicator metadata.

    Used at submission so the final classification depends only on what was
    recorded and the inspection's config snapshot, not on the live catalog.
    """
    deviations = [
        Deviation(
            indicator_id=r.indicator_id,
            indicator_name=r.indicator_name,
            pillar_name=r.pillar_name,
            risk_level=r.risk_level,
            weight=r.weight,
            remarks=r.remarks,
        )
        for r in records
        if r.response == ResponseValue.NO
    ]
    return _tally(deviations, thresholds)
