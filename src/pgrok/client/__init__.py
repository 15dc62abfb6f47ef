"""Tunnel session client: local proxy, control channel and orchestration."""
