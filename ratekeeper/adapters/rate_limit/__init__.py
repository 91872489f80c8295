"""Rate limiting adapters.

Token bucket primitive, the in-process bucket registry, and the state stores
(Redis for shared deployments, in-memory for tests and single processes).
"""
