"""
Fundamentals data layer: quota tracking, caching, provider adapters,
aggregation and the fallback policy.
"""
