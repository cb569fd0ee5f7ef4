"""Generative-UI chat assistant back end."""

__version__ = "0.1.0"
