"""pluginsync - download, verify and lock editor plugins declared in a manifest."""

__version__ = "1.0.0"
