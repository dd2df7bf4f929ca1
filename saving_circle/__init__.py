"""Round-based installment scheduler for Algorand saving circles."""

__version__ = "0.3.0"
