"""
API routers of the connector: signed platform callbacks and the health check.
"""
