"""Narrator — Cognitive systems."""
