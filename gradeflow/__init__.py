"""
Gradeflow - grading orchestration for assignment question responses.

This package routes each learner (or author-preview) response to a
type-specific grading strategy, cross-checks scoring consistency, keeps
an audit trail of every grading decision, and exposes whole-attempt
grading runs as observable asynchronous jobs.
"""

__version__ = "1.0.0"
__author__ = "Gradeflow Team"
