"""
Services Layer

Game engine services that:
- Accept domain inputs (IDs, sessions, rulesets)
- Return domain outputs (models, dataclasses, dicts)
- Do NOT depend on HTTP request/response objects
- Own the transaction boundary of every tournament-mutating operation
"""
