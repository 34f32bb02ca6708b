"""Bundled landing-page templates."""
