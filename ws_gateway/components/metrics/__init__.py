"""
Gateway counters.
"""
