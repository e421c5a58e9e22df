"""Window-stability analysis of lottery draw histories."""

__version__ = "0.1.0"
