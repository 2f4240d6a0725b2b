"""Dependency injection for FastAPI endpoints"""

from fastapi import Request
from ledger_import.infrastructure.clients.refunds import RefundMatcherClient
from ledger_import.infrastructure.clients.invalidation import ViewInvalidationClient


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_refund_matcher() -> RefundMatcherClient:
    """Provide refund matcher client instance"""
    return RefundMatcherClient()


def get_view_invalidation_client() -> ViewInvalidationClient:
    """Provide view invalidation webhook client instance"""
    return ViewInvalidationClient()
