"""kmscert: self-signed X.509 certificates for keys held in a custody service."""

__version__ = "1.0.0"
