"""
Rubric Module.

Validation of judge-awarded rubric scores.
"""

from gradeflow.rubric.validator import RubricScoreValidator

__all__ = ["RubricScoreValidator"]
