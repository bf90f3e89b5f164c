"""Finances app package.

Payment records for booking and extension charges, the Stripe gateway
wrapper and the webhook that lets Stripe finish an extension when the
client never calls back.
"""
