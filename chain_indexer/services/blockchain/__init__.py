"""Upstream blockchain access."""
