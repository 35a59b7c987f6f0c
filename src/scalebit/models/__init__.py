"""Data models for the Scalebit controller."""
