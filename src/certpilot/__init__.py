"""certpilot: certificate lifecycle manager for Traefik-fronted domains."""

__version__ = "1.0.0"
