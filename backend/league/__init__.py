"""League standings and knockout progression backend."""

__version__ = "0.1.0"
