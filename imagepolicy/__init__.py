"""Image admission policy: resolve container image references and accept or reject them by rule."""

__version__ = "0.1.0"