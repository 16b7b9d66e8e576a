"""
Cap tracking: per (group, rule) accumulators with lazy interval resets.
"""
