"""Storage layer for the Scalebit controller."""
