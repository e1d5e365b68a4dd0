"""Core building blocks shared by every neo-authz feature."""
