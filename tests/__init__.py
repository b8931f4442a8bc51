"""
concrnt test suite.

Tests are organized by layer:
    tests/unit/         Unit tests (no network, fast)
    tests/integration/  Client, readers and CLI over mocked HTTP and websocket peers

Run all tests:
    pytest

Run unit tests only:
    pytest tests/unit/
"""
