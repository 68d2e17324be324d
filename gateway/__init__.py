"""
Platform connectivity.

Submodules:
    protocol: Opcodes, ``GatewayEnvelope``, ``SessionState`` and the JSON frame codec.
    client: ``GatewayClient`` resumable websocket session with heartbeating.
    http: ``ActionClient`` slash-command and component interactions over HTTPS.
"""
