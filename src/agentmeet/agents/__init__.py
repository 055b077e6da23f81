"""Agent module -- AI personas owned by a user.

Provides the SQLAlchemy model, Pydantic schemas, AgentRepository and
AgentService. Agents are referenced by meetings and registered as remote
call participants when a meeting is provisioned.
"""
