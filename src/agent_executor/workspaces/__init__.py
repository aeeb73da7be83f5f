"""Client workspace isolation."""

from .router import WorkspaceBinding, WorkspaceRouter, resolve_within

__all__ = ["WorkspaceBinding", "WorkspaceRouter", "resolve_within"]
