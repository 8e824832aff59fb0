"""ideaflow: idea lifecycle state machine and prototype version lineage."""

__version__ = "0.1.0"
