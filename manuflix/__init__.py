"""Manuflix Checkout API: subscription plans, PIX checkout and payment confirmation"""

__version__ = "1.0.0"
