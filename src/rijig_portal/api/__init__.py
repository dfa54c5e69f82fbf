"""rijig_portal.api: Step routes, session lifecycle, dashboards, health."""
