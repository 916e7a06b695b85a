"""
Integration modules for PayCore

Contains adapters and clients for external systems:
- Payment gateways (Stripe, in-memory test gateway)
"""
