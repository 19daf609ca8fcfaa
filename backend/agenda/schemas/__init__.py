"""Pydantic request/response schemas and catalog payload parsers."""
