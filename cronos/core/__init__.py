"""
Runtime abstraction, lifecycle state machine, dependency resolution and
event distribution.
"""
