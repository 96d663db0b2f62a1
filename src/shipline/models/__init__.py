"""Result models for pipeline runs."""

from shipline.models.run import RunReport, RunState, StageResult

__all__ = ["RunReport", "RunState", "StageResult"]
