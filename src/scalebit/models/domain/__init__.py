"""Internal domain models shared by the storage and service layers."""
