"""
RPG task system application package.

Layered the same way throughout:

  database.py        — pure I/O: the ``GameState`` table and row helpers.
  app/services/      — business logic: document validation, stat clamping,
                       custom-task edits.
  app/exceptions.py  — error taxonomy mapped to HTTP statuses.

``server.py`` is the integration point: ``create_app`` builds a
:class:`~app.services.GameStateService` over the ``database`` module and the
route handlers pass a per-request session into it.
"""
