"""
LLM collaborators for the decision layer.

The LLM interprets and proposes; the deterministic decision layer validates and
decides. Nothing in this package produces user-facing answers.
"""
