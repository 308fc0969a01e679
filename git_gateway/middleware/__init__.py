"""HTTP middleware for request ids and access logging."""
