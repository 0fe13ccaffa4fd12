"""
connectors — clients for the external connect broker.

  • broker.py   server-side client (project OAuth, connect tokens, accounts)
  • catalog.py  token-bound app catalog client with cursor pagination
  • widget.py   the connect widget contract and its hosted-link implementation
  • errors.py   error types shared by the connect components
"""
