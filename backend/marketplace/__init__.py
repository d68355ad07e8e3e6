"""
Marketplace Services Backend

Vendor, loyalty, review, experimentation, pricing and reporting services
for the marketplace storefront.
"""

__version__ = "1.0.0"
