"""
Integration tests for the speaches test service.

These tests verify end-to-end functionality including:
- Startup, provisioning and property publishing against an in-process service
- Concurrent suites sharing one instance
- A real speaches container (opt-in, needs Docker)
"""
