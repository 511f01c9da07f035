"""auth/ -- Credential lifecycle for BidBuy Buyers and Vendors.

Layer rule: auth/ imports only stdlib, third-party libraries, core/ and notify/.
It does NOT import from api/. api/ and main.py import from auth/, not the
other way around.
"""
