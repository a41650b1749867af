"""Single-purpose LLM calls."""
