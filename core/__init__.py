"""
Core concurrency primitives of the connector: the staged registry and the bounded channels
shared by the provider's background workers and the relay.
"""
