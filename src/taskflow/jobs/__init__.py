"""RQ job entry points. Each runs async service code in a managed session."""
