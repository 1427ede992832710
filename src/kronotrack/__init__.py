"""Live race tracking core for Kronotrack participants."""
