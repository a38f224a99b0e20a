"""Model catalog and deterministic canary-aware model selection."""
