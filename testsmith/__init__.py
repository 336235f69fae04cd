"""testsmith: generate, run, and merge back tests with a coding agent."""

__version__ = "0.1.0"
