"""LexMap configuration: language detection, ignore patterns and run settings."""

from lexmap.config.ignore import DEFAULT_IGNORE_PATTERNS, load_gitignore, should_ignore
from lexmap.config.languages import SUPPORTED_EXTENSIONS, get_language, is_supported
from lexmap.config.settings import IndexSettings, parse_command_option

__all__ = [
    "DEFAULT_IGNORE_PATTERNS",
    "SUPPORTED_EXTENSIONS",
    "IndexSettings",
    "get_language",
    "is_supported",
    "load_gitignore",
    "parse_command_option",
    "should_ignore",
]
