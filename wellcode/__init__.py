"""Wellcode: GitHub webhook ingestion and PR scoring pipeline"""

__version__ = "0.1.0"
