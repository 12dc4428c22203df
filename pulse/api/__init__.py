"""对外 HTTP API."""
