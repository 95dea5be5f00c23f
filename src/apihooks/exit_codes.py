"""Numeric process exit codes for the ``apihooks`` CLI.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~apihooks.exceptions.ApihooksError` subclass.
CI scripts can inspect the exit code to tell a broken hook file from a
missing worker without parsing stderr.

Example::

    $ apihooks list --hookfiles 'hooks/*.py' --sandbox
    $ echo $?
    4   # EXIT_HOOK_LOAD_ERROR -- a hook file failed to evaluate
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_CONFIG_ERROR = 2
"""The run configuration is invalid or names an unsupported combination."""

EXIT_RESOLUTION_ERROR = 3
"""Hook file patterns could not be expanded."""

EXIT_HOOK_LOAD_ERROR = 4
"""A hook source unit failed to parse or raised during evaluation."""

EXIT_WORKER_ERROR = 5
"""The hooks worker process could not be started or failed irrecoverably."""
