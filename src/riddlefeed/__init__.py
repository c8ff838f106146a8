"""riddlefeed - a locally persisted quiz and riddle feed."""

__version__ = "0.1.0"
