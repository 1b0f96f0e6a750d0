"""
botgate Server Package.

The HTTP+JSON surface of the permission engine and agent runtime.

Subpackages:
    api: FastAPI route definitions under ``/api/v1``.
    core: Settings, constants and database wiring.
    exception_handlers: Mapping of core errors to HTTP responses.
    services: The ``OrchestratorService`` singleton used by every route.
"""
