"""Ingress validation for untrusted inbound content."""

from content_firewall.ingress.validator import IngressValidator

__all__ = ["IngressValidator"]
