"""Logging and request correlation."""

from .logging import bind_deployment, configure_logging, request_id_ctx

__all__ = ["bind_deployment", "configure_logging", "request_id_ctx"]
