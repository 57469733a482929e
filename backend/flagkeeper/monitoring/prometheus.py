# backend/flagkeeper/monitoring/prometheus.py
from prometheus_client import Counter, Histogram

def get_flag_mutations_total():
    """
    Returns a singleton Counter for flag mutations by operation and outcome.
    Ensures the metric is only registered once per process.
    """
    if not hasattr(get_flag_mutations_total, "_counter"):
        get_flag_mutations_total._counter = Counter(
            "flagkeeper_flag_mutations_total",
            "Total flag mutations",
            ["operation", "outcome"]
        )
    return get_flag_mutations_total._counter

def get_flag_evaluations_total():
    """
    Returns a singleton Counter for flag evaluations by environment and result.
    Ensures the metric is only registered once per process.
    """
    if not hasattr(get_flag_evaluations_total, "_counter"):
        get_flag_evaluations_total._counter = Counter(
            "flagkeeper_flag_evaluations_total",
            "Total flag evaluations",
            ["environment", "result"]
        )
    return get_flag_evaluations_total._counter

def get_flag_operation_duration_seconds():
    """
    Returns a singleton Histogram for flag service operation duration.
    Ensures the metric is only registered once per process.
    """
    if not hasattr(get_flag_operation_duration_seconds, "_histogram"):
        get_flag_operation_duration_seconds._histogram = Histogram(
            "flagkeeper_flag_operation_duration_seconds",
            "Flag service operation duration in seconds",
            ["operation"]
        )
    return get_flag_operation_duration_seconds._histogram
