"""Service layer helpers (settings, telemetry)."""
