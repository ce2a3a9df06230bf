"""
Storefront admin backend.

A FastAPI service that keeps a product and category catalog in a remote
store (JSON document, object storage or relational tables) and gates writes
behind a single admin account.
"""
