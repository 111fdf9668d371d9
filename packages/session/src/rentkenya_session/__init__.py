"""Session core: profile reconciliation, the auth provider, and the view gate.

- state: immutable AuthSnapshot and the reconciliation transitions
- provider: AuthProvider, the reactive context views read from
- gate: SessionGate, the render / loading / redirect decision
"""
