"""Shared primitives: errors, civil dates, logging."""
