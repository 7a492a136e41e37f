"""HTTP middleware and observability setup."""
