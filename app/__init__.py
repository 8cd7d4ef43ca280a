"""
CraveGames application package.

Layered architecture:

  app/repositories/  storage backends behind one ``Storage`` protocol
                     (in-memory with optional JSON file, or SQL).
  app/services/      business logic, the coin economy and the admin gate.

``cravegames_web.create_app`` is the integration point: it receives a storage
backend, builds one instance of each service around it and exposes them to
the Flask route handlers, which only translate HTTP to service calls.
"""
