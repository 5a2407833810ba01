"""api/ -- FastAPI HTTP surface over the identity engine."""
