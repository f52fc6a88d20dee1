"""Furlong: race-result ingestion and bet settlement service."""

__version__ = "0.1.0"
