"""Workflow nodes; each exposes ``run(state, runtime)``."""
