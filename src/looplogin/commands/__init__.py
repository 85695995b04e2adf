"""Built-in CLI sub-commands for looplogin.

* :mod:`~looplogin.commands.login` -- run one interactive sign-in.
* :mod:`~looplogin.commands.config` -- view and modify stored defaults.

``login`` is a plain callback registered directly on the root app;
``config`` exports a :class:`typer.Typer` sub-application.
"""
