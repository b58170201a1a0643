"""
Test suite for the chat load-test harness.

This package contains:
- unit/: harness behaviour against in-process fakes
- smoke/: checks against a live chat backend (skipped when none is reachable)
- mocks/: fake gateway and fake auth backend
- performance/: Locust scenarios, the user-pool CLI and the threshold gate
"""
