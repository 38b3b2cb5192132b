"""Process exit codes for the nocfl-index CLI."""

SUCCESS = 0
GENERAL_ERROR = 1
USAGE_ERROR = 2
NOT_FOUND = 3
EXECUTION_FAILURE = 4
