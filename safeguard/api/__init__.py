"""
Read-only dashboard API.
"""
