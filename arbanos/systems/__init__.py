"""ArbanOS -- Systems."""
