"""Meeting lifecycle module -- data models, repository, and orchestration.

Provides Pydantic schemas, SQLAlchemy models, MeetingRepository, the
MeetingService that provisions remote calls on Stream Video, and the
reconciler that settles meetings whose provisioning did not finish.
"""
