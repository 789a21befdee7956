"""Core helpers shared by all hvtools domains.

Contains path handling, application directories, configuration and the
console theme.
"""
