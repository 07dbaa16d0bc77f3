"""
msgbox: end-to-end encrypted message boxes on an append-only public ledger.
An account publishes a signed encryption key as the first entry of its own log;
senders verify that proof against the account's ledger key before encrypting.
"""

__version__ = "0.1.0-dev"
