"""rijig_portal.services: State machine, step handlers and audit log."""
