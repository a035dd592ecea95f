"""Dashboard JSON API for the security events timeline."""
