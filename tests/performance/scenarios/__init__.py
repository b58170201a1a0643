"""
Locust scenario user classes.

Each module in this package defines Locust ``HttpUser`` subclasses that
model one traffic pattern:

- :mod:`.smoke`: single end-to-end pass (health + join/send/ping/leave)
- :mod:`.websocket_stress`: long-lived connections, message bursts,
  room churn
- :mod:`.websocket_reconnect`: standard, storm and frequent reconnects
- :mod:`.websocket_spike`: connection surge into one shared room
- :mod:`.auth_storm`: login-heavy load
- :mod:`.mixed`: production-like blend of login, REST and WebSocket
- :mod:`.rest_api`: REST write paths (servers, channels, uploads)

All concrete scenarios inherit from the abstract base classes in
:mod:`.base`, which acquire the session and wrap the harness.
"""
