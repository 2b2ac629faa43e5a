"""Test and benchmark harness for the Typesense search server."""

__version__ = "0.1.0"
