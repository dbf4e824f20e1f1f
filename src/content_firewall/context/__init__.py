"""Capability-restricted agent contexts."""

from content_firewall.context.builder import ContextBuilder, build_context

__all__ = ["ContextBuilder", "build_context"]
