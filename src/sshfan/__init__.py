"""sshfan - run one command or upload on many SSH hosts at once."""

__version__ = "0.1.0"
