"""HTTP-level tests for the task and auth endpoints."""
