"""shipline — multi-service CI/CD pipeline orchestrator."""

from shipline.version import __version__

__all__ = ["__version__"]
