"""Member accounts: profile, photo, password, course enrollment, membership, admin user management."""
