"""mathflat-sync: MathFlat activity, homework and wrong-answer ingestion."""

__version__ = "1.0.0"
