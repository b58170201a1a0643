"""
Performance testing package (Locust-based).

Contains Locust user classes, the Locust metrics bridge, a CLI that
pre-registers the credential pool, and a CI threshold checker that
together load-test the chat backend.

Traffic goes to the REST API for authentication and resource calls and
to the WebSocket gateway for real-time messaging, the same two paths a
browser client uses.

Key Concepts Demonstrated:
- WebSocket attempts reported through ``events.request`` so handshake
  latency sits next to HTTP latency in Locust's stats
- Per-user authentication lifecycle (login → register fallback)
- Tagged scenarios so CI can run subsets via ``--tags``
- CSV-based threshold gates for automated pass/fail decisions
"""
