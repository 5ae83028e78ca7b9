"""
STACK FTP Bridge

Serves a STACK public share over FTP. Clients log in as ``share@domain`` with
the share password; every FTP command is forwarded to the share's HTTP API.
"""

__version__ = "0.3.0"
