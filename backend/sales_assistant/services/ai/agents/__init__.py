"""JSON-mode LLM agents used by the decision layer."""
