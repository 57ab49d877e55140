import os
import tempfile
import threading

from pwch import db
from pwch.bridge import KickOutcome


class TempDataDir:
    """Points PWCH_DATA_DIR at a fresh directory with an empty database."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self._old_data_dir = os.environ.get("PWCH_DATA_DIR")
        os.environ["PWCH_DATA_DIR"] = self._tmp.name
        db.configure(None)
        db.init_db()

    def tearDown(self):
        if self._old_data_dir is None:
            os.environ.pop("PWCH_DATA_DIR", None)
        else:
            os.environ["PWCH_DATA_DIR"] = self._old_data_dir
        self._tmp.cleanup()

    @property
    def data_dir(self):
        return self._tmp.name


def read_events(data_dir):
    path = os.path.join(data_dir, "events.log")
    if not os.path.exists(path):
        return []
    with open(path, encoding="utf-8") as f:
        return f.read().splitlines()


class FakeBridge:
    def __init__(self, *, rekey_exc=None, kick_exc=None, delay=0.0):
        self.rekey_exc = rekey_exc
        self.kick_exc = kick_exc
        self.kick_outcome = KickOutcome.TERMINATED
        self.delay = delay
        self.rekey_calls = []
        self.kick_calls = []
        self._lock = threading.Lock()

    def rekey_mailbox(self, account, old_digest, new_digest):
        with self._lock:
            self.rekey_calls.append((account, old_digest, new_digest))
        if self.delay:
            threading.Event().wait(self.delay)
        if self.rekey_exc is not None:
            raise self.rekey_exc

    def terminate_sessions(self, account):
        with self._lock:
            self.kick_calls.append(account)
        if self.kick_exc is not None:
            raise self.kick_exc
        return self.kick_outcome


class FakeMailer:
    def __init__(self, exc=None):
        self.exc = exc
        self.sent = []

    def __call__(self, envelope_from, to_addr, message):
        if self.exc is not None:
            raise self.exc
        self.sent.append((envelope_from, to_addr, message))
