"""
Decision services.
"""
