"""Live event feeds."""
