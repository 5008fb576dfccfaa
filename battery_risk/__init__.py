"""Domestic battery risk modelling over a city fishnet."""

__version__ = "0.1.0"
