"""
Trend helpers for monthly series.
"""
from typing import List, Tuple


def linear_regression(x_values: List[float], y_values: List[float]) -> Tuple[float, float]:
    """
    Simple linear regression: y = mx + b
    Returns: (slope, intercept)
    """
    if len(x_values) != len(y_values) or len(x_values) < 2:
        return (0.0, 0.0)

    n = len(x_values)
    sum_x = sum(x_values)
    sum_y = sum(y_values)
    sum_xy = sum(x * y for x, y in zip(x_values, y_values))
    sum_x2 = sum(x ** 2 for x in x_values)

    denominator = n * sum_x2 - sum_x ** 2
    if denominator == 0:
        return (0.0, sum_y / n if n > 0 else 0.0)

    slope = (n * sum_xy - sum_x * sum_y) / denominator
    intercept = (sum_y - slope * sum_x) / n

    return (slope, intercept)


def project_next(values: List[float]) -> float:
    """Extrapolate the next value of an evenly spaced series, never below zero."""
    if len(values) < 2:
        return values[-1] if values else 0.0
    slope, intercept = linear_regression([float(i) for i in range(len(values))], values)
    return max(0.0, slope * len(values) + intercept)


def trend_direction(values: List[float], threshold: float = 5.0) -> str:
    """UP, DOWN or STABLE from the regression slope relative to the series mean (percent per step)."""
    if len(values) < 2:
        return "STABLE"
    mean = sum(values) / len(values)
    if mean == 0:
        return "STABLE"
    slope, _ = linear_regression([float(i) for i in range(len(values))], values)
    change = slope / mean * 100
    if change > threshold:
        return "UP"
    elif change < -threshold:
        return "DOWN"
    return "STABLE"
