"""Idempotent entitlement commands with a transactional outbox and leased delivery."""

__version__ = "0.1.0"
