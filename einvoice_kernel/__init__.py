"""
E-Invoicing Kernel

The compliance core of a government e-invoicing integration:
- Hash-chained, gapless invoice numbering per series
- Deterministic UBL document assembly
- Credential onboarding state machine (CSR -> compliance -> production)
- Clearance / reporting submission with reconciled status bookkeeping
"""

__version__ = "0.1.0"
