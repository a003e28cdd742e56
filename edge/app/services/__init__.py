"""Service layer for the edge application."""
