# fitcoach/core/__init__.py
"""
Core application modules.
Contains essential infrastructure components:
- bootstrap: Default admin creation on first startup
- db: Database configuration, connection management and store error mapping
- errors: Application error taxonomy rendered by the HTTP layer
- logging: Logger configuration (JSON in production, text in development)
- revocation: Process-local blacklist of logged-out tokens
- security: Clock, randomness and password hashing
- tokens: Signed access token minting and verification
"""
