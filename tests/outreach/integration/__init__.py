"""Integration tests for the outreach pipeline.

These tests run single stages and components against an in-memory
SQLite ledger, the in-memory queue broker and simulated providers.
"""
