"""
Enriched portfolio view: joins positions with fundamentals and computes
allocations, concentration and risk metrics.
"""
