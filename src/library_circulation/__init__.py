"""Library Circulation - copy, loan and reservation lifecycle for a membership library."""

__version__ = "0.1.0"
