"""Deploy plane FastAPI application."""

from .main import create_app
from .settings import DeployPlaneSettings

__all__ = ["create_app", "DeployPlaneSettings"]
