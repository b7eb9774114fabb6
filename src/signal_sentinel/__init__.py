"""
Signal Sentinel - dead-man's-switch liveness and ratio monitoring.
"""

__version__ = "0.1.0"
