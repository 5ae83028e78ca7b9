"""
pyftpdlib wiring: authorizer, handlers and server factory.

Login flow:
  USER/PASS → StackAuthorizer.validate_authentication → binder.bind
  → session stored on the handler → StackFS built around it by pyftpdlib
"""

import logging
from typing import Optional

import httpx
from pyftpdlib.authorizers import AuthenticationFailed as FTPAuthenticationFailed
from pyftpdlib.handlers import DTPHandler, FTPHandler
from pyftpdlib.servers import ThreadedFTPServer

from . import binder
from .config import BridgeConfig
from .errors import AuthenticationFailed, StackError
from .filesystem import StackFS
from .streams import UploadStream

log = logging.getLogger(__name__)

# Every command is allowed through; the filesystem refuses what STACK can't do
#   e=CWD l=LIST r=RETR a=APPE d=DELE/RMD f=RNFR/RNTO m=MKD w=STOR M=SITE CHMOD T=MFMT
ALL_PERMS = "elradfmwMT"


class StackAuthorizer:
    """pyftpdlib authorizer that logs users in against their STACK share.

    There is no user table: any ``share@domain`` is accepted if the STACK
    API accepts the password.
    """

    def __init__(self, http_timeout: float = 30.0,
                 url_template: str = binder.DEFAULT_URL_TEMPLATE,
                 transport: Optional[httpx.BaseTransport] = None,
                 perms: str = ALL_PERMS):
        self.http_timeout = http_timeout
        self.url_template = url_template
        self.transport = transport
        self.perms = perms

    def validate_authentication(self, username: str, password: str, handler) -> None:
        connection_id = _connection_id(handler)
        try:
            session = binder.bind(
                connection_id, username, password,
                timeout=self.http_timeout,
                url_template=self.url_template,
                transport=self.transport,
            )
        except AuthenticationFailed as e:
            raise FTPAuthenticationFailed(f"Authentication failed: {e.reason}") from e

        previous = getattr(handler, "stack_session", None)
        if previous is not None:
            previous.close()
        handler.stack_session = session

    def get_home_dir(self, username: str) -> str:
        return "/"

    def has_user(self, username: str) -> bool:
        return "@" in username

    def has_perm(self, username: str, perm: str, path: Optional[str] = None) -> bool:
        return perm in self.perms

    def get_perms(self, username: str) -> str:
        return self.perms

    def get_msg_login(self, username: str) -> str:
        share, _, domain = username.partition("@")
        return f"Logged in to share '{share}' on {domain}."

    def get_msg_quit(self, username: str) -> str:
        return "Goodbye."

    def impersonate_user(self, username: str, password: str) -> None:
        pass

    def terminate_impersonation(self, username: str) -> None:
        pass


def _connection_id(handler) -> str:
    ip = getattr(handler, "remote_ip", None) or "?"
    port = getattr(handler, "remote_port", None) or "?"
    return f"{ip}:{port}"


class StackDTPHandler(DTPHandler):
    """Data channel that reports failed STACK uploads to the client.

    pyftpdlib closes the file object after it has already queued its
    "226 Transfer complete" reply; an upload only really completes when the
    PUT response arrives in UploadStream.close(), so close it first.
    Transfers that did not finish cancel the PUT instead.
    """

    def close(self):
        upload = self.file_obj
        if not self._closed and isinstance(upload, UploadStream) and not upload.closed:
            if not self.transfer_finished:
                # ABOR, idle timeout or socket error: never commit a partial file
                upload.abort()
            else:
                try:
                    upload.close()
                except StackError as e:
                    log.error(f"Upload of {upload.name} failed: {e}")
                    self.transfer_finished = False
                    self._resp = (f"451 Upload failed: {e}.", log.error)
        super().close()


class StackFTPHandler(FTPHandler):
    """Command channel for one FTP client; owns that client's StackSession."""

    abstracted_fs = StackFS
    dtp_handler = StackDTPHandler
    # Remote downloads are not local files
    use_sendfile = False

    stack_session = None

    def _close_stack_session(self) -> None:
        session, self.stack_session = self.stack_session, None
        if session is not None:
            session.close()

    def pre_process_command(self, line, cmd, arg):
        # A listing only serves the command that fetched it
        if self.fs is not None:
            self.fs.discard_listing()
        super().pre_process_command(line, cmd, arg)

    def on_login(self, username):
        log.info(f"client={_connection_id(self)}, logged in as {username}")

    def on_logout(self, username):
        log.info(f"client={_connection_id(self)}, logged out {username}")
        self._close_stack_session()

    def on_disconnect(self):
        self._close_stack_session()

    def close(self):
        # on_disconnect is scheduled on the ioloop, which a per-connection
        # thread may already have left; release the session here as well
        super().close()
        self._close_stack_session()

    def on_file_sent(self, file):
        log.info(f"client={_connection_id(self)}, download complete: {file}")

    def on_file_received(self, file):
        log.info(f"client={_connection_id(self)}, upload complete: {file}")

    def on_incomplete_file_sent(self, file):
        log.warning(f"client={_connection_id(self)}, incomplete download: {file}")

    def on_incomplete_file_received(self, file):
        log.warning(f"client={_connection_id(self)}, incomplete upload: {file}")


def build_handler(config: BridgeConfig,
                  transport: Optional[httpx.BaseTransport] = None) -> type:
    """Create a StackFTPHandler subclass carrying the given settings."""
    authorizer = StackAuthorizer(
        http_timeout=config.http_timeout,
        url_template=config.url_template,
        transport=transport,
    )
    return type("ConfiguredStackFTPHandler", (StackFTPHandler,), {
        "authorizer": authorizer,
        "passive_ports": config.passive_port_range,
        "masquerade_address": config.masquerade_address,
        "timeout": config.idle_timeout,
        "banner": config.banner,
    })


def build_server(config: BridgeConfig,
                 transport: Optional[httpx.BaseTransport] = None) -> ThreadedFTPServer:
    """Create the FTP server. One thread per connection, so blocking HTTP
    calls only ever stall the client that issued them.
    """
    handler = build_handler(config, transport=transport)
    server = ThreadedFTPServer((config.bind_address, config.port), handler)
    server.max_cons = config.max_connections
    server.max_cons_per_ip = config.max_connections_per_ip
    return server
