"""
Shared module for code used by both the WS Gateway and the WS client.

STRUCTURE:
- shared.config: Configuration
  - settings.py: Environment config (pydantic-settings)
  - logging.py: Structured logging, security audit logger
  - constants.py: Roles, order/table statuses

- shared.security: Authentication
  - auth.py: Token verifier (pure) and development token signer

- shared.events: Wire event shapes shared by server, socket client and poller

- shared.infrastructure: Collaborators
  - correlation.py: Connection id propagation into logs
  - db.py: SQLAlchemy engine and session factory
  - status_store.py: CRUD collaborator protocol and adapters

- shared.utils: Utilities
  - exceptions.py: Domain exceptions
  - retry.py: Exponential backoff with jitter

IMPORT EXAMPLES:
    from shared.security.auth import verify_token, sign_token
    from shared.config.settings import settings
    from shared.events import EventName, OrderStatusUpdated
    from shared.utils.exceptions import MutationError
"""
