"""
Core application: shared infrastructure for the billing project.

Nothing in here knows about payments, subscriptions or wallets. Domain apps
(accounts, practice, billing) build on these pieces.

Models (import from core.models):
    - BaseModel: Abstract model with created_at / updated_at

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID primary key

Services (import from core.services):
    - ServiceResult: Explicit success / failure result for service calls
    - BaseService: Logging and transaction helpers for service classes

Exceptions (import from core.exceptions):
    - BaseApplicationError and its subclasses (ValidationError,
      NotFoundError, ConflictError, ExternalServiceError)

Views (import from core.views):
    - health_check: Liveness endpoint for load balancers
"""
