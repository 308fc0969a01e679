"""Git Gateway.

Exposes a local code repository to tool-calling clients over JSON-RPC,
gated by OAuth2 identity providers.
"""

SERVICE_NAME = "git-gateway"
VERSION = "0.3.0"
