"""HTTP surface of the commission engine."""
