"""ssh-key-audit — authorized_keys hygiene audit and risk scoring."""

__version__ = "1.5.0"
