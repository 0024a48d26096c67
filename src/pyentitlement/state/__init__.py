"""State layer.

Turns verified license API responses into entitlement snapshots and keeps
them in a cache that re-verifies signatures on every read.
"""
