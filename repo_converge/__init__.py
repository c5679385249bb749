"""repo-converge: Git operations and declarative release/issue reconciliation."""

__version__ = "0.1.0"
