#!/usr/bin/env python3
# -*- coding: utf-8 -*-


from datetime import datetime, timezone
import json
import os
import sys
import typing
import threading

import kpxcpc.constants as CONSTANTS


#####################################################################################################################################################################

"""
    Provides structured JSON-lines audit logging for the client.

    Records go to the file named by the KPXCPC_AUDIT_LOG environment variable
    (or the explicit path given to the constructor). With neither set, events
    are dropped. Callers must never pass secrets (passwords, TOTP codes, keys).
"""
class AuditLog:

	def __init__(self, path: typing.Optional[str] = None):
		self._lock = threading.RLock()
		self._path = path if path is not None else os.environ.get(CONSTANTS._AUDIT_LOG_ENV, "")


	@property
	def enabled(self) -> bool:
		return bool(self._path)


	def event(self, **kv: typing.Any):

		if not self._path:
			return

		# Construct ISO8601Z timestamp
		ts = datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")

		# Append timestamp to event
		record = {"timestamp": ts, "client": CONSTANTS._CLIENT_NAME}
		record.update(kv)

		with self._lock:
			try:
				with open(self._path, "a", encoding="utf-8") as f:
					json.dump(record, f, ensure_ascii=False, default=str)
					f.write("\n")

			except OSError as e:
				print(f"Audit log write error: {e}", file=sys.stderr)
