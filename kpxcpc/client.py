#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
    File name: client.py

    Description:
        Entry point for kpxcpc. Wires the session, transport, action
        dispatcher, handshake, identity store, audit log, and error handler
        into a KeePassXCClient, and exposes the `kpxcpc` command line:

            kpxcpc [--json] [--fmt FMT] URL [URL ...]     print logins
            kpxcpc --totp UUID [UUID ...]                 print TOTP codes
            kpxcpc --associate                            pair and print the identity record

        All failures are routed through the ErrorHandler, which records them
        in the audit log and picks the exit status.
"""


import argparse
import sys
import time
import typing

# Import logging module
from kpxcpc.utilities.audit_log import AuditLog

# Import presentation helpers
from kpxcpc.utilities.formatting import expand_escapes, format_entries, entries_to_json, totp_to_json

# Import identity store
from kpxcpc.encryption.identity_manager import Identity, IdentityManager

# Import handlers
from kpxcpc.handlers.session_handler import ClientSessionHandler
from kpxcpc.handlers.transport_handler import TransportHandler
from kpxcpc.handlers.action_handler import ActionHandler, RetryPolicy, GetLoginsResult
from kpxcpc.handlers.handshake_handler import HandshakeHandler, UnlockWaitPolicy
from kpxcpc.handlers.error_handler import ErrorHandler, ExitCodes, KeePassXCError
import kpxcpc.constants as CONSTANTS


#####################################################################################################################################################################

"""
    One connection to KeePassXC: a session, its transport, and the handlers
    driving them. Call connect() once, then any number of actions.
"""
class KeePassXCClient:

    """
        @param transport (TransportHandler): Connected transport; owned and closed by the client.
        @param identity (Identity): Stored identity, or None to pair a new one.
        @param identity_saver (callable): Receives the Identity after a new association.
        @param decrypt_retry (RetryPolicy): Shared by the handshake and the dispatcher.
        @param unlock_wait (UnlockWaitPolicy): Wait-for-unlock behavior during the handshake.
        @param notify (callable): Unlock-wait progress callback; defaults to a stderr line.
    """
    def __init__(
        self,
        transport: TransportHandler,
        identity: typing.Optional[Identity] = None,
        identity_saver: typing.Optional[typing.Callable[[Identity], None]] = None,
        audit_log: typing.Optional[AuditLog] = None,
        decrypt_retry: typing.Optional[RetryPolicy] = None,
        unlock_wait: typing.Optional[UnlockWaitPolicy] = None,
        trigger_unlock: bool = True,
        sleep: typing.Callable[[float], None] = time.sleep,
        notify: typing.Optional[typing.Callable[[int], None]] = None,
    ) -> None:

        self._audit_log = audit_log if audit_log is not None else AuditLog()
        self._transport = transport

        self.session = ClientSessionHandler.new_session(identity)
        self.actions = ActionHandler(self.session, transport, self._audit_log, decrypt_retry)

        handshake_options = {}
        if notify is not None:
            handshake_options["notify"] = notify

        self.handshake = HandshakeHandler(
            self.actions,
            identity_saver=identity_saver,
            decrypt_retry=decrypt_retry,
            unlock_wait=unlock_wait,
            trigger_unlock=trigger_unlock,
            sleep=sleep,
            audit_log=self._audit_log,
            **handshake_options,
        )


    def connect(self) -> Identity:
        return self.handshake.connect()


    def association_data(self) -> Identity:
        return self.session.association_data()


    def get_logins(self, url: str, submit_url: typing.Optional[str] = None, http_auth: typing.Optional[str] = None) -> GetLoginsResult:
        return self.actions.get_logins(url, submit_url, http_auth)


    def get_totp(self, uuid: str) -> str:
        return self.actions.get_totp(uuid)


    def close(self) -> None:
        self._transport.close()


    def __enter__(self) -> "KeePassXCClient":
        return self


    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()



"""
    Create a client connected to KeePassXC. The handshake is not run yet.

    @param socket_paths (list[str]): Sockets to try; defaults to the XDG runtime locations.
    @param identity_path (str): Identity record path, "-" for stdin/stdout.
    @param new_identity (bool): Ignore any stored record and pair a fresh identity.
    @param timeout (float): Optional socket timeout in seconds.
    @return KeePassXCClient: Client whose identity_saver writes back to identity_path.
"""
def create_client(
    socket_paths: typing.Optional[typing.Sequence[str]] = None,
    identity_path: typing.Optional[str] = None,
    new_identity: bool = False,
    timeout: typing.Optional[float] = None,
    audit_log: typing.Optional[AuditLog] = None,
    decrypt_retry: typing.Optional[RetryPolicy] = None,
    unlock_wait: typing.Optional[UnlockWaitPolicy] = None,
    trigger_unlock: bool = True,
    sleep: typing.Callable[[float], None] = time.sleep,
    notify: typing.Optional[typing.Callable[[int], None]] = None,
) -> KeePassXCClient:

    audit_log = audit_log if audit_log is not None else AuditLog()

    identity_manager = IdentityManager(identity_path or IdentityManager.default_identity_path(), audit_log)
    identity = IdentityManager.generate_identity() if new_identity else identity_manager.load()

    transport = TransportHandler.connect(socket_paths or TransportHandler.default_socket_paths(), timeout)

    return KeePassXCClient(
        transport,
        identity=identity,
        identity_saver=identity_manager.save,
        audit_log=audit_log,
        decrypt_retry=decrypt_retry,
        unlock_wait=unlock_wait,
        trigger_unlock=trigger_unlock,
        sleep=sleep,
        notify=notify,
    )



################################################################################################
# Command line
################################################################################################

def _build_parser() -> argparse.ArgumentParser:

    parser = argparse.ArgumentParser(prog=CONSTANTS._CLIENT_NAME, description="Fetch logins and TOTP codes from KeePassXC over its browser-integration socket.")

    parser.add_argument("--socket", default=None, help="path to the KeePassXC browser socket")
    parser.add_argument("--identity", default=None, help="identity file (default: $XDG_DATA_HOME/kpxcpc/identity.json, '-' for stdin/stdout)")
    parser.add_argument("--json", action="store_true", help="print JSON instead of formatted entries")
    parser.add_argument("--associate", action="store_true", help="pair a new identity and print its record to stdout")
    parser.add_argument("--totp", action="store_true", help="treat arguments as entry UUIDs and print TOTP codes")
    parser.add_argument("--fmt", default=CONSTANTS._DEFAULT_ENTRY_FORMAT,
        help="entry format: name %%n, login %%l, password %%p, uuid %%u, custom field %%F:name, literal %%%%")
    parser.add_argument("--no-wait", action="store_true", help="fail instead of waiting for the database to be unlocked")
    parser.add_argument("--no-trigger-unlock", action="store_true", help="do not ask KeePassXC to show its unlock dialog")
    parser.add_argument("--keep-going", action="store_true", help="report a failing argument and continue with the next one")
    parser.add_argument("--timeout", type=float, default=None, help="socket timeout in seconds")
    parser.add_argument("targets", nargs="*", metavar="URL|UUID")

    return parser



def _report(message: str) -> None:
    print(f"{CONSTANTS._CLIENT_NAME}: {message}", file=sys.stderr)



def _render(client: KeePassXCClient, target: str, totp: bool, as_json: bool, fmt: str) -> str:

    if totp:
        code = client.get_totp(target)
        return totp_to_json(code) if as_json else code + "\n"

    result = client.get_logins(target)
    return entries_to_json(result.entries) if as_json else format_entries(fmt, result.entries)



"""
    Run the kpxcpc command line.

    @param argv (list[str]): Arguments without the program name; sys.argv[1:] when None.
    @return int: Process exit status from ExitCodes.
"""
def main(argv: typing.Optional[typing.Sequence[str]] = None) -> int:

    args = _build_parser().parse_args(argv)

    audit_log = AuditLog()
    error_handler = ErrorHandler(audit_log)

    if not args.associate and not args.targets:
        _report("please provide at least one " + ("entry UUID" if args.totp else "URL"))
        return ExitCodes.USAGE

    # Expand \n, \t, etc. so a format fits on one shell line
    fmt = args.fmt
    if not args.json:
        try:
            fmt = expand_escapes(args.fmt)
        except KeePassXCError as e:
            message, _ = error_handler.handle_client_error(e, "fmt")
            _report(message)
            return ExitCodes.USAGE

    try:
        client = create_client(
            socket_paths=[args.socket] if args.socket else None,
            identity_path=CONSTANTS._STDIO_PATH if args.associate else args.identity,
            new_identity=args.associate,
            timeout=args.timeout,
            audit_log=audit_log,
            unlock_wait=UnlockWaitPolicy(enabled=not args.no_wait),
            trigger_unlock=not args.no_trigger_unlock,
        )

        with client:
            client.connect()

            if args.associate:
                return ExitCodes.OK

            status = ExitCodes.OK
            for target in args.targets:
                try:
                    sys.stdout.write(_render(client, target, args.totp, args.json, fmt))
                    sys.stdout.flush()

                except KeePassXCError as e:
                    message, exit_status = error_handler.handle_client_error(e, target)
                    _report(message)

                    if not args.keep_going:
                        return exit_status
                    if status == ExitCodes.OK:
                        status = exit_status

            return status

    except KeePassXCError as e:
        message, exit_status = error_handler.handle_client_error(e, "connect")
        _report(message)
        return exit_status



if __name__ == "__main__":
    sys.exit(main())
