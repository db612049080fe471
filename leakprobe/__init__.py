"""Interactive split-tunnel leak tests, socket helpers and in-memory process and image registries."""

__version__ = "0.1.0"