"""Pydantic schemas for API payloads."""
