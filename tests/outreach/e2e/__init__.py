"""E2E tests for the outreach pipeline.

These tests drive whole campaigns through every stage, and exercise the
HTTP API, with simulated providers standing in for external services.
"""
