"""im-deploy: k3s cluster lifecycle on OpenStack."""

__version__ = "0.1.0"
