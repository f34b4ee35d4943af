"""Narrator — Shared primitives."""
