"""Narrator — Telemetry."""
