"""
Sales dashboard data layer: caching, retries and request coordination.
"""
__version__ = "1.0.0"
