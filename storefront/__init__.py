"""
                Pizza Palace Storefront

Customer-facing food-ordering front-end: menu, cart, checkout,
order tracking and a minimal admin view, composed over a hosted
backend (managed Postgres + auth + change notifications).

Author: Khalil_Bannouri
Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__author__ = "Khalil_Bannouri"
