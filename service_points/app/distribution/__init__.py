"""
Outcome distribution: turns a matched rule and its participants into
person audit entries and group point deltas.
"""
