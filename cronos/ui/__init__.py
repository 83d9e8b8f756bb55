"""Terminal output for Cronos."""
