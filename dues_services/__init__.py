"""
dues_services -- Package init.

Responsibility:
    The payment processor port (``dues_services.processor``) and the
    caller-facing operation facade (``dues_services.operations``).

Architecture position:
    Services -- outermost layer.

    Dependency direction:
        dues_services/ -> dues_modules/, dues_engines/, dues_kernel/  (allowed)
        dues_engines/  -> dues_services/                               (FORBIDDEN)
        dues_kernel/   -> dues_services/                               (FORBIDDEN)

    ``dues_modules.installments`` depends on the processor port only, so
    this module imports nothing eagerly; import the submodules directly.
"""
