"""Feature modules: idempotency, entitlements and notifications."""
