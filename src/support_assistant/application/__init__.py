"""Application layer: use cases and business errors, decoupled from HTTP."""
