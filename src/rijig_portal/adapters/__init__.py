"""rijig_portal.adapters: Identity provider contract and its HTTP client."""
