"""Core fetch, configuration and Wikipedia source logic."""
