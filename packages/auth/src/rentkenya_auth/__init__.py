"""Authentication backend for the session core.

Talks to Supabase Auth over HTTP, verifies access tokens, and persists the
current session so an already-signed-in user is recognized on start.
"""
