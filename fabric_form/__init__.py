"""Fabric QR Form: fabric inventory entry with printable QR code labels."""

__version__ = "1.0.0"

# Shared constants
FIELD_NAMES = ("fabricType", "colour", "length", "width", "price", "dateOfPurchase")
NUMERIC_FIELDS = ("length", "width", "price")
PRINT_SURFACE_SIZE = (600, 600)  # Fixed size of the print window
