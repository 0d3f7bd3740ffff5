"""HTTP surface for the context engine."""
