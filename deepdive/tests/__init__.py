"""Deep-dive backend test suite."""
