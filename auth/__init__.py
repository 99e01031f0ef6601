"""
auth — Session credential management.

Provides:
  • Password hashing (bcrypt, 12 rounds)
  • Access / refresh token signing with separate keys
  • ``SessionAuthority`` — register, login, refresh, logout, password reset
  • ``get_current_principal`` FastAPI dependency
  • Periodic expiry sweep of stored tokens
"""
