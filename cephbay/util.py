"""
Shared helpers: debug output, command execution and rotated log reading.
"""

import glob
import gzip
import json
import os
import subprocess
import sys

from cephbay.errors import CommandError

DEBUG = False


def set_debug(enabled):
    """Turn debug output on or off."""
    global DEBUG
    DEBUG = bool(enabled)


def debug_print(message):
    """Print debug messages if DEBUG is enabled."""
    if DEBUG:
        print(f"[DEBUG] {message}", file=sys.stderr)


def warning_print(message):
    """Print a warning; warnings are never fatal."""
    print(f"[WARNING] {message}", file=sys.stderr)


def run_command(command, is_json=False, silent=False):
    """Helper function to run shell commands and return output (None on failure)."""
    try:
        if not silent:
            debug_print(f"Running: {' '.join(command)}")

        result = subprocess.run(command, capture_output=True, text=True, check=True)

        if is_json:
            return json.loads(result.stdout)
        return result.stdout.strip()
    except FileNotFoundError:
        debug_print(f"Command not found: {command[0]}")
        return None
    except subprocess.CalledProcessError as e:
        if not silent:
            debug_print(f"Command failed: {' '.join(command)}")
            debug_print(f"Error: {e.stderr}")
        return None
    except json.JSONDecodeError as e:
        debug_print(f"JSON decode failed: {e}")
        return None


def run_checked(command):
    """Run a command whose failure matters; raise CommandError instead of returning None."""
    debug_print(f"Running: {' '.join(command)}")
    try:
        result = subprocess.run(command, capture_output=True, text=True)
    except FileNotFoundError as e:
        raise CommandError(command, None, str(e)) from e

    if result.returncode != 0:
        raise CommandError(command, result.returncode, result.stderr.strip())
    return result.stdout.strip()


def run_status(command):
    """
    Run a command where the exit status itself is the answer.

    Returns:
        subprocess.CompletedProcess, or None if the tool is not installed
    """
    debug_print(f"Running: {' '.join(command)}")
    try:
        return subprocess.run(command, capture_output=True, text=True)
    except FileNotFoundError:
        debug_print(f"Command not found: {command[0]}")
        return None


def rotated_logs(pattern):
    """Log files matching pattern, oldest first (like ls -rt)."""
    paths = [p for p in glob.glob(pattern) if os.path.isfile(p)]
    return sorted(paths, key=lambda p: (os.path.getmtime(p), _rotation_rank(p)))


def _rotation_rank(path):
    # syslog.3.gz is older than syslog.1, which is older than syslog
    parts = os.path.basename(path).split('.')
    for part in reversed(parts):
        if part.isdigit():
            return -int(part)
    return 0


def read_log_lines(paths):
    """Yield lines from plain or gzip'd log files in the given order (zcat -f)."""
    for path in paths:
        opener = gzip.open if path.endswith('.gz') else open
        try:
            with opener(path, 'rt', errors='replace') as handle:
                for line in handle:
                    yield line.rstrip('\n')
        except OSError as e:
            warning_print(f"Could not read {path}: {e}")
