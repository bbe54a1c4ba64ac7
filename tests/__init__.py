"""
Test suite for the Taskboard API.

- unit/: pipeline stages, models, JWT handling and error translation
- integration/: HTTP-level tests through the Flask test client
- security/: mass-assignment and injection probes
"""
