"""Write the parental-control block list of MAC addresses and restart the firewall."""

from __future__ import annotations

import contextlib
import fcntl
import subprocess
import sys
import time

PCMD_LIST = "/tmp/.pcmd"
LOG_FILE = "/rdklogs/logs/Parcon.txt"

_SEPARATOR = "-----------------"
_SEPARATOR_POSITIONS = (2, 5, 8, 11, 14)


def validate_mac(address):
    """Return True if ``address`` has colons where a MAC address has them."""
    if address is None or len(address) <= _SEPARATOR_POSITIONS[-1]:
        return False
    return all(address[pos] == ":" for pos in _SEPARATOR_POSITIONS)


def _log(log_path, *lines):
    with contextlib.suppress(OSError), open(log_path, "a") as fh:
        for line in lines:
            fh.write(f"{line}\n")


def _date():
    return time.strftime("%a %b %e %H:%M:%S %Z %Y")


def _restart_firewall():
    with contextlib.suppress(OSError):
        subprocess.run(["sysevent", "set", "firewall-restart"], check=False)


def write_block_list(macs, list_path=PCMD_LIST, log_path=LOG_FILE):
    """Write the entry count and the valid MACs to ``list_path`` under a lock.

    Invalid addresses are logged to ``log_path``. Returns the addresses written.
    """
    macs = list(macs)
    accepted = []
    with open(list_path, "w") as fh:
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX)
        except OSError:
            print("Error while locking the file")
        try:
            fh.write(f"{len(macs)}\n")
            for mac in macs:
                if validate_mac(mac):
                    fh.write(f"{mac}\n")
                    accepted.append(mac)
                else:
                    _log(log_path, f"Error: Invalid input Mac address {mac}")
            fh.flush()
        finally:
            with contextlib.suppress(OSError):
                fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
    return accepted


def main(argv=None):
    """Replace the block list with the MACs given as arguments."""
    if argv is None:
        argv = sys.argv[1:]
    argv = list(argv)
    print(f"argc = {len(argv) + 1}")

    _log(LOG_FILE, _SEPARATOR)
    _log(LOG_FILE, "parcon_entry", _date())
    if not argv:
        _log(LOG_FILE, "Cleaning the block list")

    try:
        write_block_list(argv, PCMD_LIST, LOG_FILE)
    except OSError:
        _log(LOG_FILE, f"Error: Not able to create{PCMD_LIST}")
    else:
        _log(LOG_FILE, "Got the device list, Restarting firewall")
        _restart_firewall()

    _log(LOG_FILE, "parcon_exit", _date())
    _log(LOG_FILE, _SEPARATOR)
    return 0


if __name__ == "__main__":
    sys.exit(main())