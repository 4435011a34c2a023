"""Usage and retention statistics for the account service."""
