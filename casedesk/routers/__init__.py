"""Routers for the Casedesk HTTP adapter."""
