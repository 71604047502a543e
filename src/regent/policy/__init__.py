"""Governance policy configuration."""
