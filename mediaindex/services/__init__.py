"""Clients for the platform's log, storage and preview endpoints."""
