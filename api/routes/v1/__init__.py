"""Version 1 REST routers, mounted under /api/v1 by api/main.py."""
