"""Configuration, block lists, caches, REST endpoints and a command-line client for a blocking DNS proxy."""

__version__ = "0.1.0"