"""dstui - A terminal client for Synology Download Station."""

try:
    from ._version import __version__
except ImportError:
    try:
        from importlib.metadata import version

        __version__ = version("dstui")
    except Exception:
        __version__ = "0.0.0+unknown"
