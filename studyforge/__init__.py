"""
studyforge - asynchronous study-set generation and learning schedulers.

Packages:
- jobs: durable job store and polling workers
- generation: extraction, corpus assembly, generative calls, artifact persistence
- study: SM-2 flashcard scheduling, quiz mastery, weak areas, review submission
- db: SQLAlchemy engine, sessions and models
"""

__version__ = "1.0.0"
