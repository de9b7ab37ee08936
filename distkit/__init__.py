"""distkit: release planning and cross-machine build coordination."""

__version__ = "0.4.0"
