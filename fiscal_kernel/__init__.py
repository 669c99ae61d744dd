"""
Fiscal Kernel - compliance core for the car-wash point of sale.

Owns the parts of invoicing that must be correct regardless of the backing
store:
- Fiscal permit ("timbrado") gating
- Sequential invoice numbering per establishment / point of sale
- Monthly usage quotas per account
- 24-hour modification window for issued documents
- Authenticated encryption of tax-authority credentials at rest
"""

__version__ = "0.1.0"
