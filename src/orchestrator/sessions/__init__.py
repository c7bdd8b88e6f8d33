"""Orchestration sessions -- repository, relationship builder and session manager.

Provides OrchestrationRepository for async persistence of sessions,
supervisor/worker edges and messages, create_agent_relationships for
hierarchical sessions, and SessionManager for the session lifecycle.
"""
