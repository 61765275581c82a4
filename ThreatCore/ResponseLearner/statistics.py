"""
Small statistical helpers shared by the decision learner: means, Wilson score
intervals, entropy based consistency, rate trends and score distribution checks.
"""

import math
from collections import Counter
from typing import Dict, List, Optional, Sequence, Tuple, Any

import numpy as np

from ..enums import FeatureCategory
from .enums import Trend
from .models import ScoreDistribution


def mean(values: Sequence[Optional[float]]) -> float:
    present = [v for v in values if v is not None]
    if not present:
        return 0.0
    return float(np.mean(np.asarray(present, dtype=float)))


def wilson_interval(successes: int, total: int, z: float = 1.96) -> Tuple[float, float]:
    """Wilson score interval for ``successes`` out of ``total``, clamped to [0, 1]"""
    if total == 0:
        return 0.0, 0.0

    p = successes / total
    n = total
    denominator = 1 + z * z / n
    center = (p + z * z / (2 * n)) / denominator
    margin = (z / denominator) * math.sqrt((p * (1 - p) + z * z / (4 * n)) / n)

    return max(0.0, center - margin), min(1.0, center + margin)


def consistency_score(actions: Sequence[str], min_actions: int = 5) -> float:
    """
    1 minus the normalized Shannon entropy of the action distribution.
    Small histories are treated as fully consistent.
    """
    if len(actions) < min_actions:
        return 1.0

    counts = Counter(actions)
    total = len(actions)
    entropy = 0.0
    for count in counts.values():
        p = count / total
        if p > 0:
            entropy -= p * math.log2(p)

    max_entropy = math.log2(len(counts))
    return 1 - entropy / max_entropy if max_entropy > 0 else 1.0


def find_outliers(entries: List[Dict[str, Any]], frequency: float = 0.05,
                  limit: int = 10) -> List[Dict[str, Any]]:
    """Entries whose action type makes up less than ``frequency`` of the history"""
    if not entries:
        return []

    counts = Counter(e['action'] for e in entries)
    total = len(entries)

    outliers = []
    for entry in entries:
        share = counts[entry['action']] / total
        if share < frequency:
            outliers.append({
                'action_id': entry['id'],
                'reason': entry.get('reason') or 'No reason provided',
                'deviation': 1 - share
            })
        if len(outliers) >= limit:
            break
    return outliers


def rate_trend(weekly_rates: Sequence[float], change: float = 0.1) -> str:
    """Compare the two most recent weeks with the two before them; index 0 is the latest week"""
    if len(weekly_rates) < 4:
        return Trend.STABLE.value

    recent = (weekly_rates[0] + weekly_rates[1]) / 2
    older = (weekly_rates[2] + weekly_rates[3]) / 2
    delta = recent - older

    if delta > change:
        return Trend.INCREASING.value
    if delta < -change:
        return Trend.DECREASING.value
    return Trend.STABLE.value


def analyze_score_distribution(released: Sequence[float], blocked: Sequence[float], step: int = 5,
                               released_ceiling: float = 35, blocked_floor: float = 50,
                               min_group: int = 5) -> ScoreDistribution:
    if not released or not blocked:
        return ScoreDistribution(0, 'Insufficient data for analysis', 0, 0)

    released_mean = mean(released)
    blocked_mean = mean(blocked)

    # released mail scoring high means the threshold quarantines too much
    if released_mean > released_ceiling and len(released) > min_group:
        return ScoreDistribution(
            suggested_adjustment=step,
            reason=f"Released emails have high average score ({released_mean:.1f}). Consider raising threshold.",
            false_positive_impact=sum(1 for s in released if s < released_mean + 5),
            false_negative_risk=0.1
        )

    if blocked_mean < blocked_floor and len(blocked) > min_group:
        return ScoreDistribution(
            suggested_adjustment=-step,
            reason=f"Manually blocked emails have low average score ({blocked_mean:.1f}). Consider lowering threshold.",
            false_positive_impact=0,
            false_negative_risk=sum(1 for s in blocked if s > blocked_mean - 5) / len(blocked)
        )

    return ScoreDistribution(0, 'Current thresholds appear well-calibrated', 0, 0)


def threshold_category(threshold_name: str) -> str:
    if 'deterministic' in threshold_name:
        return 'deterministic'
    if threshold_name.startswith('ml_'):
        return 'ml'
    if 'urgency' in threshold_name:
        return FeatureCategory.CONTENT.value
    return 'general'
