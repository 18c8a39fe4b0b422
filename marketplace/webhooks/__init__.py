"""Inbound webhooks from Printful, Gelato, PingPay and Stripe.

Each webhook is signature-verified, normalized, and applied to its order
through the transition engine.
"""
