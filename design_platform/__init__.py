"""DesignDesk - subscription design-service platform (backend).

Customers subscribe to a package, open design requests, exchange messages and
files with the studio; admins run the request lifecycle, customers, payments
and the marketing content.

See README for setup and usage.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
