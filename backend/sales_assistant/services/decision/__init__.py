"""
Decision layer: routes a free-text request to bounded answer contracts
before any content is generated.

Deterministic first, LLM as fallback. The planning output obeys the chain
invariants regardless of what the LLM says.
"""
