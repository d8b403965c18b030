"""keyward: resumable hardening of freshly provisioned hosts."""

__version__ = "0.3.0"
