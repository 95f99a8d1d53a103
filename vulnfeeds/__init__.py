"""Load Ubuntu, SUSE, Rocky Linux and Wolfi advisory feeds into an in-memory store and query them."""

__version__ = "0.1.0"