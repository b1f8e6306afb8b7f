"""Infrastructure clients for message store backends."""
