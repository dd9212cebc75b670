"""Telemetry relay for rocket ground support equipment."""
