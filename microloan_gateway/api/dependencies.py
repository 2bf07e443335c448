"""Dependency injection for FastAPI endpoints"""

from typing import Optional

from fastapi import Header, HTTPException, Request

from microloan_gateway.infrastructure.clients.notifier import NotificationClient


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_actor_id(x_actor_id: Optional[str] = Header(None)) -> Optional[str]:
    """Acting admin identity, resolved upstream and forwarded in X-Actor-Id"""
    return x_actor_id or None


def require_actor_id(x_actor_id: Optional[str] = Header(None)) -> str:
    if not x_actor_id:
        raise HTTPException(status_code=401, detail="X-Actor-Id header is required")
    return x_actor_id


def get_notification_client() -> NotificationClient:
    """Provide notification webhook client instance"""
    return NotificationClient()
