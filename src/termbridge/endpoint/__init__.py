"""HTTP/WebSocket endpoint for termbridge.

Accepts browser terminal connections, hands the authentication decision
to a pluggable Authenticator, and runs one bridge Session per accepted
WebSocket.
"""
