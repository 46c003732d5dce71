"""GNU Taler payment gateway for an invoicing host.

Provisions merchant-backend orders for invoices and settles them when the
customer's wallet pays.
"""

__version__ = "0.1.0"
