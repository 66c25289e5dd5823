"""Pydantic models for configuration and payloads."""
