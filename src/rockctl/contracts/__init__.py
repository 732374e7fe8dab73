"""JSON schemas for rockctl config documents and command payloads."""
