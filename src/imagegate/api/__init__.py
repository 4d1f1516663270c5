"""imagegate — FastAPI layer.

Modules
-------
main
    Application factory, module-level ``app`` and the ``main()`` CLI entry
    point.
handler
    The per-request pipeline: access gate, validation, sizing, backend call.
access
    Method/path filtering and bearer-token authentication.
validation
    Content type, JSON body, prompt and model checks.
models
    Pydantic request model.
errors
    Client-facing error taxonomy.
"""
