"""Sandboxed evaluation of configuration expressions."""

from repo_converge.rendering.expressions import build_issue_filter, evaluate

__all__ = ["build_issue_filter", "evaluate"]
