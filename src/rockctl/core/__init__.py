"""Ambient runtime helpers shared by every rockctl component."""
