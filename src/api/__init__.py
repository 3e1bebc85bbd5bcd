"""
FastAPI alert router service.

Provides REST and WebSocket APIs for alert routing:
- POST /webhook, /webhook/grafana - Inbound alert events
- /rule-assignments - Assignment CRUD
- /notifications, /preferences - History, read state and delivery preferences
- WS /ws/notifications - Live notification stream
- GET /health - Service health check
"""

from src.api.app import create_app

__all__ = ["create_app"]
