"""Poll lifecycle and voting."""
