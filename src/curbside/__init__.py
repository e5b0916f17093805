"""
Curbside billing core.

Subscription and billing lifecycle for a residential waste-collection service:
catalog, payment methods, invoices, and the subscription engine.
"""

__version__ = "1.0.0"
