"""Commodity description attached to a project (IFC Chapter 32)."""
