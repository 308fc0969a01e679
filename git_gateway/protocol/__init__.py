"""Tool protocol: JSON-RPC dispatch, transports and the session registry."""
