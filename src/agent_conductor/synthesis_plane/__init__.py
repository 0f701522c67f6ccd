"""Synthesis plane: drives external coding agents."""
