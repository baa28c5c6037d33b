"""Adaptive testing engine: IRT estimation and question selection."""

__version__ = "0.1.0"
