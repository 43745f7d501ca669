"""Contract Registry - temporal lifecycle engine for contracts and quotes.

Runs the daily background jobs that move registry records through their
expiry lifecycle, create automatic renewals and mail digest notifications
to the configured recipients.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
