"""
Shared infrastructure: persistence, config, locks, metrics and messaging.
"""
