"""Service layer for Furlong."""
