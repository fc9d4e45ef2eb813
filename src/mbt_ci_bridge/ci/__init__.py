"""Workflow event handling."""
