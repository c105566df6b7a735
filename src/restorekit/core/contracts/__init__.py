"""Pydantic models for restore points and commands."""
