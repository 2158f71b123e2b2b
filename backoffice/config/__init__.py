"""Configuration: environment settings and the plan catalog seed file."""
