"""
Pydantic data models.
"""
