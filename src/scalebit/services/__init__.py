"""Service layer for the Scalebit controller."""
