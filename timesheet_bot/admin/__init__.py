# timesheet_bot/admin/__init__.py
"""
Admin application service.

Route handlers in ``transport/http_app.py`` parse the request, call
``AdminApplicationService`` and map ``AdminError`` to an HTTP status.
"""
