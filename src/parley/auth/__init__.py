"""Authentication.

Learn: users log in with email/password and receive JWT access/refresh
tokens. Every protected route and the WebSocket endpoint resolve the
token to a CurrentIdentity; nothing downstream touches the raw token.
"""
