"""Deal evaluation module -- models, schemas, store, and the evaluation engines.

Provides SQLAlchemy models and Pydantic schemas for deals, pricing rules,
approval workflows and conflicts; DealStore for async data access; and the
validation, conflict detection, pricing, and approval workflow engines
composed by DealEvaluationPipeline.
"""
