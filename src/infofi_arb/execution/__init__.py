"""Trade execution flows."""
