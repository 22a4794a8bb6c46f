# =============================================================================
#  Copycord
#  Copyright (C) 2025 github.com/Copycord
#
#  This source code is released under the GNU Affero General Public License
#  version 3.0. A copy of the license is available at:
#  https://www.gnu.org/licenses/agpl-3.0.en.html
# =============================================================================


import contextvars
import logging

stream_name = contextvars.ContextVar("stream_name", default=None)


def stream_prefix() -> str:
    """
    Returns something like "[chat] " while a drain loop for the chat stream
    is running in this task/context, else "".
    """
    s = stream_name.get()
    if s:
        return f"[{s}] "
    return ""


class StreamPrefixFilter(logging.Filter):
    """
    Prepend the active stream name to every relay log line.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            prefix = stream_prefix()
        except Exception:
            prefix = ""

        if prefix and not getattr(record, "_stream_prefix_injected", False):
            record.msg = prefix + str(record.msg)
            record._stream_prefix_injected = True
        return True
