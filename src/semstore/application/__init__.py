"""Application layer: ranking, query inference, sanitisation, maintenance."""
