"""Logging subsystem for kmscert.

Public API::

    from kmscert.logging import configure_logging

    configure_logging(settings.logging)
"""

from kmscert.logging.setup import configure_logging

__all__ = ["configure_logging"]
