"""Run report aggregation and presentation."""

from exercise_verify.reporting.aggregator import (
    RunReportAggregator,
    derive_status,
    skip_for_compilation,
)
from exercise_verify.reporting.presenter import ConsolePresenter, JsonPresenter, ResultPresenter

__all__ = [
    "ConsolePresenter",
    "JsonPresenter",
    "ResultPresenter",
    "RunReportAggregator",
    "derive_status",
    "skip_for_compilation",
]
