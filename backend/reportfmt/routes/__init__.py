from importlib import import_module

modules = [
    'report_formats',
]

for m in modules:
    import_module(f'.{m}', __name__)

__all__ = modules
