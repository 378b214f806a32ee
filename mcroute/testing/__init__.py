"""Synthetic fixtures shared by the test-suite and the examples."""
