"""
Crypto plugin.

LUKS operations on device-mapper crypt devices through ``cryptsetup``.
Passphrases are always fed on stdin, never placed on the command line.
"""

from __future__ import annotations

import re

from blockdev.core.errors import CommandFailed, CryptoError
from blockdev.core.logging import get_logger
from blockdev.core.models import LUKSStatus
from blockdev.utils.exec import exec_and_capture_output, exec_and_report_error

logger = get_logger(__name__)

CRYPTSETUP = "cryptsetup"
STDIN_KEY = "-"

# cryptsetup exit codes
_NOT_LUKS = 1
_INACTIVE = 4

_STATUS_LINE = re.compile(r"^\s*(?P<key>[\w ]+?):\s+(?P<value>.*?)\s*$")

_SUPPORTED_FUNCTIONS = (
    "luks_format",
    "luks_open",
    "luks_close",
    "luks_add_key",
    "luks_remove_key",
    "luks_uuid",
    "luks_status",
    "is_luks",
)


def get_supported_functions() -> tuple[str, ...]:
    return _SUPPORTED_FUNCTIONS


def _key_source(passphrase: str | None, key_file: str | None) -> tuple[str, str | None]:
    """Return (key file argument, stdin data) for exactly one key source."""
    if (passphrase is None) == (key_file is None):
        raise CryptoError("Exactly one of passphrase and key_file must be given")
    if key_file is not None:
        return key_file, None
    return STDIN_KEY, passphrase


def luks_format(
    device: str,
    cipher: str | None = None,
    key_size: int = 0,
    passphrase: str | None = None,
    key_file: str | None = None,
) -> bool:
    """Format ``device`` as LUKS; ``key_size`` is in bits, 0 for the default."""
    key_arg, stdin = _key_source(passphrase, key_file)

    argv = [CRYPTSETUP, "luksFormat", "--batch-mode"]
    if cipher:
        argv.extend(["--cipher", cipher])
    if key_size:
        argv.extend(["--key-size", str(key_size)])
    argv.extend([f"--key-file={key_arg}", device])

    return exec_and_report_error(argv, input=stdin)


def luks_open(
    device: str,
    name: str,
    passphrase: str | None = None,
    key_file: str | None = None,
    read_only: bool = False,
) -> bool:
    key_arg, stdin = _key_source(passphrase, key_file)

    argv = [CRYPTSETUP, "luksOpen", f"--key-file={key_arg}"]
    if read_only:
        argv.append("--readonly")
    argv.extend([device, name])

    return exec_and_report_error(argv, input=stdin)


def luks_close(name: str) -> bool:
    return exec_and_report_error([CRYPTSETUP, "luksClose", name])


def luks_add_key(
    device: str,
    passphrase: str | None = None,
    key_file: str | None = None,
    new_passphrase: str | None = None,
    new_key_file: str | None = None,
) -> bool:
    """
    Add a key slot to ``device``, unlocking it with an existing key.

    Only one of the existing and the new key can come from a passphrase.
    """
    key_arg, stdin = _key_source(passphrase, key_file)
    new_key_arg, new_stdin = _key_source(new_passphrase, new_key_file)
    if stdin is not None and new_stdin is not None:
        raise CryptoError("Only one of the existing and the new key can be a passphrase")

    argv = [CRYPTSETUP, "luksAddKey", "--batch-mode", f"--key-file={key_arg}", device, new_key_arg]
    return exec_and_report_error(argv, input=stdin if stdin is not None else new_stdin)


def luks_remove_key(
    device: str,
    passphrase: str | None = None,
    key_file: str | None = None,
) -> bool:
    """Remove the key slot unlocked by the given key."""
    key_arg, stdin = _key_source(passphrase, key_file)
    argv = [CRYPTSETUP, "luksRemoveKey", "--batch-mode", device, key_arg]
    return exec_and_report_error(argv, input=stdin)


def luks_uuid(device: str) -> str:
    return exec_and_capture_output([CRYPTSETUP, "luksUUID", device]).strip()


def is_luks(device: str) -> bool:
    try:
        return exec_and_report_error([CRYPTSETUP, "isLuks", device])
    except CommandFailed as e:
        if e.returncode == _NOT_LUKS:
            return False
        raise


def luks_status(name: str) -> LUKSStatus:
    """State of the ``name`` mapping as reported by ``cryptsetup status``."""
    try:
        output = exec_and_capture_output([CRYPTSETUP, "status", name])
    except CommandFailed as e:
        if e.returncode == _INACTIVE:
            return LUKSStatus(name=name, active=False)
        raise

    fields: dict[str, str] = {}
    for line in output.split("\n")[1:]:
        match = _STATUS_LINE.match(line)
        if match:
            fields[match.group("key").strip().lower()] = match.group("value")

    key_size = fields.get("keysize", "0").split()[0]
    return LUKSStatus(
        name=name,
        active=True,
        cipher=fields.get("cipher"),
        key_size=int(key_size) if key_size.isdigit() else 0,
        device=fields.get("device"),
    )
