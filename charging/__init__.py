"""Charging station queue, reservation engine and maintenance scheduler."""
