"""
Mosquitto Manager - Console Package
=====================================
The web shell around the brokerctl core.

This package provides:
- FastAPI application with the startup reconciliation in its lifespan
- REST API endpoints for the configuration document and broker control
- WebSocket endpoint pushing connected clients, stats and raw log lines

Architecture:
    main.py      -> FastAPI app creation, core wiring, background tasks
    settings.py  -> Read config.yaml and .env for the manager itself
    routes.py    -> All REST API endpoint handlers
    websocket.py -> WebSocket connection manager and message broadcasting
"""
