"""contented: turn a tree of source files into an addressable content index."""

__version__ = "0.1.0"
