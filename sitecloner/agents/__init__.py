"""Model-backed pipeline agents and the gateway they call through."""
