"""Persistence — audit event log and engine state snapshots."""
