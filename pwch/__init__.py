"""Self-service mail password change through one-time links."""
