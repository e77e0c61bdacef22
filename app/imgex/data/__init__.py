"""Bundled data files for imgex (default theme)."""
