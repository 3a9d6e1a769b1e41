"""GuardianLink audit logging."""
