"""LexMap: architectural policy engine over a multi-language code graph."""

__version__ = "0.1.0"
