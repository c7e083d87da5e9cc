"""Core module: logging, metrics and tracing plumbing.

Nothing is re-exported here; import the submodules directly.
"""
