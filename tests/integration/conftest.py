# tests/integration/conftest.py — v1
"""Integration test marker registration."""

from __future__ import annotations


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: end-to-end tests over real backends")
