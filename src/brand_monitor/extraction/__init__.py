"""Heuristic citation and sentiment extraction over provider answers."""
