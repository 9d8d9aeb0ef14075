"""
services package: connector protocol semantics, persistence and Thing templates.
"""
