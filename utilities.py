import inspect
from datetime import datetime, timezone
import os

import psutil
from rich import print as _print
from rich.markup import escape

# Ordered from most to least verbose; PAGEWRIGHT_LOG_LEVEL picks the floor
LOG_THRESHOLDS = {
    'DEBUG': 0,
    'INFO': 1,
    'WARNING': 2,
    'QUIET': 3,
}

# logType -> (opening symbol, closing symbol, rich style, rank)
LOG_TYPES = {
    'DEBUG':     ('[[[', ']]]', 'white', 0),
    'INFO':      ('---', '---', 'blue', 1),
    'STATE':     ('~~~', '~~~', 'cyan', 1),
    'PROGRESS':  ('vvv', 'vvv', 'blue', 1),
    'STARTING':  ('>>>', '>>>', 'green', 1),
    'SUCCESS':   ('^^^', '^^^', 'green', 1),
    'COMPLETED': ('<<<', '<<<', 'green', 1),
    'ATTEMPT':   ('???', '???', 'cyan', 1),
    'IMPORTANT': ('===', '===', 'magenta', 1),
    'HEADER':    ('###', '###', 'magenta bold', 1),
    'WARNING':   ('(((', ')))', 'yellow', 2),
    'FAILURE':   ('###', '###', 'red bold', 2),
    'CRITICAL':  ('***', '***', 'red bold', 2),
    'EXCEPTION': ('!!!', '!!!', 'red bold', 2),
}

FUNCTION_NAME_WIDTH = 40


def _current_threshold() -> int:
    level = os.environ.get('PAGEWRIGHT_LOG_LEVEL', 'DEBUG').upper()
    return LOG_THRESHOLDS.get(level, 0)


def _caller_name() -> str:
    """Name of the function that called Print."""
    frame = inspect.currentframe()
    try:
        caller = frame.f_back.f_back if frame and frame.f_back else None
        # Print called through a lambda or comprehension still reports the enclosing function
        while caller is not None and caller.f_code.co_name.startswith('<') and caller.f_back is not None:
            caller = caller.f_back
        return caller.f_code.co_name if caller is not None else '?'
    finally:
        del frame


def Print(logType: str, message: str) -> None:
    """
    Prints a log message with timestamp, function name, symbols wrapping the logType, and the message.

    Lines below the PAGEWRIGHT_LOG_LEVEL threshold are dropped.
    """
    try:
        logTypeUpper = logType.upper()
        before_symbol, after_symbol, style, rank = LOG_TYPES.get(logTypeUpper, ('', '', '', 1))
        if rank < _current_threshold():
            return

        timestamp = datetime.now(timezone.utc).isoformat(timespec='microseconds')

        formattedLogType = escape(f"{before_symbol} {logTypeUpper} {after_symbol}")
        if style:
            formattedLogType = f"[{style}]{formattedLogType}[/{style}]"

        paddedFunctionName = _caller_name().ljust(FUNCTION_NAME_WIDTH)

        _print(f"{timestamp} {formattedLogType} {paddedFunctionName} {escape(str(message))}")

    except Exception as e:
        print(f"Something went wrong when attempting to print.\nError: {e}")


def megabytes(size_in_bytes: float) -> float:
    """Convert a byte count to MB (1 MB = 1024 * 1024 bytes)."""
    return size_in_bytes / (1024 * 1024)


def memory_usage_mb() -> float:
    """
    Returns the resident memory of the current process in MB.
    """
    current_process = psutil.Process(os.getpid())
    return megabytes(current_process.memory_info().rss)


def CPU_and_Mem_usage() -> str:
    """
    Returns a string with the CPU usage and memory usage of the current process.
    """
    cpu_usage = psutil.cpu_percent(interval=None)
    return f"CPU Usage: {cpu_usage}%, Process Memory Usage: {memory_usage_mb():.2f} MB"
