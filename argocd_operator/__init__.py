"""
Desired-state reconciliation for ArgoCD instances.

An ArgoCD instance declares its components (the redis cache tier, the
repository server, the API server and the applicationset controller). The
controller converges the child resources of every component in a store so
they match that declaration, one resource at a time.
"""

__all__ = [
    "builder",
    "controller",
    "converge",
    "exceptions",
    "instance",
    "manifest",
    "naming",
    "store",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
