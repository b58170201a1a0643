"""
In-process fakes of the chat backend.

- gateway: WebSocket gateway, usable as ``transport_factory``
- backend: auth endpoints, usable as the ``http`` session
"""
