"""Persistence layer: append-only event log and state snapshots."""
