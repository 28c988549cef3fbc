"""featureloop: iterate a coding agent over feature units until they are verified."""

__version__ = "0.1.0"
