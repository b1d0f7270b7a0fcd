"""Pydantic schemas shared by services and API handlers."""
