"""Transaction matching and rule-based classification engine."""

__version__ = "0.1.0"
