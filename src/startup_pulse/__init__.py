"""Startup market and sentiment analysis service."""

__version__ = "0.1.0"
