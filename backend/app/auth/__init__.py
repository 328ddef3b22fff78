"""Authentication module (email/password + signed identity tokens).

Provides:
    - ConnectionAuthenticator: verifies identity tokens for WebSocket
      handshakes and REST requests.
    - Registration and login endpoints that issue those tokens.
"""
