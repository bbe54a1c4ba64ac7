"""HTTP blueprints for the Taskboard API."""
