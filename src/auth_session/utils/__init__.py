"""Small helpers without dependencies on the session core."""
