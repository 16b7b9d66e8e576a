"""
Entities package: persons, groups, their point histories and the store
the engine reads and writes them through.
"""
