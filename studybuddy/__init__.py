"""StudyBuddy tier and usage configuration engine."""

__version__ = "1.0.0"
