"""Roster HTTP API."""
