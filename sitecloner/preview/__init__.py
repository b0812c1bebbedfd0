"""Rendering of generated code for visual comparison."""
