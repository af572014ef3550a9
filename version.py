"""Project version constants.

These constants are used in logs and in the ``--version`` output so that a
running shipper can be traced back to a specific release.
"""

ENGINE_NAME: str = "logship"
ENGINE_VERSION: str = "0.1.0"

# Sentinel source value mapping a column to the whole raw record.
RAW_RECORD_MARKER: str = "*"
DEFAULT_DELIMITER: str = "."
