"""Marketplace order lifecycle reconciliation.

Keeps local orders in step with payment processors (PingPay, Stripe) and
print-on-demand fulfillment providers (Printful, Gelato), and mirrors the
providers' product catalogs locally.
"""
