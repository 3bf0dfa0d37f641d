"""Pizzatrack — pizza order tracking backend.

REST API over the order store plus a WebSocket layer that fans out
order changes to connected dashboards in real time.
"""

__version__ = "0.1.0"
